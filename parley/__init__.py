"""Parley - XMPP conversational relay for a language-model assistant."""

__version__ = "0.1.0"
