"""changewatch - feed polling and roadmap change tracking."""

__version__ = "0.1.0"
