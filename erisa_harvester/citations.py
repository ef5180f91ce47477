"""
Citation resolver - turns a leaf's (Source, ID) pair into a reference URL.

ERISApedia tags each document leaf with the corpus it belongs to and the
identifier inside that corpus. Statutes and regulations that already use the
public numbering are linked verbatim; ERISA section numbers are remapped onto
Title 29 of the U.S. Code through a hand-curated table.

Examples:
    resolve("DOLStatutes", "101")  -> https://www.law.cornell.edu/uscode/text/29/1021
    resolve("DOLStatutes", "802")  -> https://www.law.cornell.edu/uscode/text/29/1193a
    resolve("IRSStatutes", "401")  -> https://www.law.cornell.edu/uscode/text/26/401
"""

import re
from typing import Dict, List, Optional, Tuple

USC_TITLE_29 = "https://www.law.cornell.edu/uscode/text/29/"
USC_TITLE_26 = "https://www.law.cornell.edu/uscode/text/26/"
CFR_TITLE_29 = "https://www.law.cornell.edu/cfr/text/29/"

# Corpora whose identifiers already match the public numbering.
VERBATIM_BASES: Dict[str, str] = {
    "IRSStatutes": USC_TITLE_26,
    "DOLRegulations": CFR_TITLE_29,
}

REMAPPED_SOURCE = "DOLStatutes"

# Known to the site, no public link scheme yet.
UNHANDLED_SOURCES = {"IRSRegulations"}

# ERISA section -> 29 U.S.C. section for targets carrying a letter suffix
# the offset arithmetic cannot produce.
LETTER_SUFFIX_EXCEPTIONS: Dict[str, str] = {
    "712": "1185a",
    "713": "1185b",
    "714": "1185c",
    "715": "1185d",
    "716": "1185e",
    "717": "1185f",
    "732": "1191a",
    "733": "1191b",
    "734": "1191c",
    "802": "1193a",
    "4022A": "1322a",
    "4022B": "1322b",
}

# (min, max, offset), closed intervals. First match in this order wins;
# do not sort.
SECTION_RANGES: List[Tuple[int, int, int]] = [
    (2, 4, 999),          # findings, definitions, coverage -> 1001-1003
    (101, 199, 920),      # Part 1 reporting and disclosure -> 1021-
    (201, 299, 850),      # Part 2 participation and vesting -> 1051-
    (301, 399, 780),      # Part 3 funding -> 1081-
    (401, 499, 700),      # Part 4 fiduciary responsibility -> 1101-
    (501, 599, 630),      # Part 5 administration and enforcement -> 1131-
    (601, 699, 560),      # Part 6 continuation coverage -> 1161-
    (701, 703, 480),      # Part 7 portability -> 1181-1183
    (711, 711, 474),      # 1185
    (731, 731, 460),      # 1191
    (801, 801, 392),      # 1193
    (3001, 3099, -1800),  # Title III jurisdiction -> 1201-
    (4001, 4199, -2700),  # Title IV plan termination insurance -> 1301-
    (4201, 4245, -2820),  # multiemployer withdrawal liability -> 1381-1425
    (4261, 4261, -2830),  # 1431
    (4281, 4281, -2840),  # 1441
    (4301, 4303, -2850),  # 1451-1453
    (4401, 4402, -2940),  # 1461-1462
]

_SECTION_SHAPE = re.compile(r"([0-9]+)([A-Za-z]*)")


def parse_section(raw: str) -> Optional[Tuple[int, str]]:
    """Split "4022A" into (4022, "A"). None when the shape does not match."""
    m = _SECTION_SHAPE.fullmatch(raw)
    if not m:
        return None
    return int(m.group(1)), m.group(2)


def remap_erisa_section(raw: str) -> str:
    """
    Map an ERISA section identifier onto its 29 U.S.C. section.

    Returns "" for identifiers that are not digits plus an optional letter
    suffix. Numbers outside every range are assumed to be U.S.C. numbers
    already and come back unchanged.
    """
    if raw in LETTER_SUFFIX_EXCEPTIONS:
        return LETTER_SUFFIX_EXCEPTIONS[raw]

    parsed = parse_section(raw)
    if parsed is None:
        return ""
    number, suffix = parsed

    for low, high, offset in SECTION_RANGES:
        if low <= number <= high:
            return f"{number + offset}{suffix}"
    return raw


def resolve(source: str, ident: str) -> str:
    """Resolve a (Source, ID) pair to a URL, or "" when it cannot be linked."""
    source = (source or "").strip()
    ident = (ident or "").strip()
    if not source or not ident:
        return ""

    if source in UNHANDLED_SOURCES:
        return ""

    if source in VERBATIM_BASES:
        return VERBATIM_BASES[source] + ident

    if source == REMAPPED_SOURCE:
        section = remap_erisa_section(ident)
        return USC_TITLE_29 + section if section else ""

    return ""


def resolve_leaf_data(data: Optional[dict]) -> str:
    """Convenience wrapper over a node's attached data record."""
    if not data:
        return ""
    return resolve(str(data.get("Source") or ""), str(data.get("ID") or ""))
