"""nexusdash: Google Calendar integration core for the nexusdash project workspace."""

__version__ = "0.1.0"
