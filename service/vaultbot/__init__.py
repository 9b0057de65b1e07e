"""Vault Bot: Telegram front end for storing and verifying Steam accounts."""

__version__ = "0.1.0"
