"""Abstract base class for authentication providers."""

from abc import ABC, abstractmethod


class AuthProvider(ABC):
    """Abstract base class for authentication providers."""

    @abstractmethod
    def get_access_token(self) -> str:
        """
        Get a valid access token for Microsoft Graph.

        Returns:
            Valid access token string

        Raises:
            AuthenticationError: If authentication fails
        """
