"""Poll football RSS feeds and post fresh headlines to chat channels."""

__version__ = "0.3.0"
