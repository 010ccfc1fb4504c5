"""Bulk calendar event tooling for Exchange Online mailboxes via Microsoft Graph."""

__version__ = "1.0.0"
