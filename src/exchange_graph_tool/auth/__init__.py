"""Authentication providers for Microsoft Graph."""
