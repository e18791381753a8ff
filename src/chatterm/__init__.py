"""chatterm - keyboard-driven terminal chat dashboard with local AI drafts."""

__version__ = "0.1.0"
