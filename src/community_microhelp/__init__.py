"""Community Microhelp: a multi-tenant neighbourhood help API."""

__version__ = "1.0.0"
