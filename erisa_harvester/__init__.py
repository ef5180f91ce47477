"""ERISApedia document tree harvester."""

__version__ = "0.1.0"
