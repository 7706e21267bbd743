"""studychat: conversation engine for an AI study assistant."""

__version__ = "0.1.0"
