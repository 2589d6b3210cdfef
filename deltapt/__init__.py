"""Delta-pt/pt track-quality cut study."""

__version__ = "0.1.0"
