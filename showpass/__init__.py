"""ShowPass: seat booking, media purchases and vendor settlement API."""

__version__ = "1.0.0"
