"""Microsoft Graph JSON batching client."""
