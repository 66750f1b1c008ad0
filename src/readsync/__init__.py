"""Reading-progress sync against KOReader-compatible progress servers."""

__version__ = "0.4.0"
