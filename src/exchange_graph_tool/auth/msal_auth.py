"""MSAL-based app-only authentication for Microsoft Graph."""

import logging
from typing import Any, Union

import msal

from ..config import GraphConfig
from ..utils.exceptions import AuthenticationError, ConfigurationError
from .base import AuthProvider

logger = logging.getLogger(__name__)


class GraphAuthProvider(AuthProvider):
    """Client credentials flow against Entra ID using a secret or certificate."""

    def __init__(self, config: GraphConfig):
        """
        Initialize Graph authentication provider.

        Args:
            config: Graph application configuration

        Raises:
            ConfigurationError: If client id or credentials are missing
        """
        if not config.client_id:
            raise ConfigurationError("A client ID is required")
        if not config.client_secret and not config.certificate_path:
            raise ConfigurationError("Either a client secret or a certificate is required")

        self.config = config
        self.scopes = [config.scope]

        logger.info(
            f"Initializing Graph auth with client credentials flow "
            f"({'certificate' if config.certificate_path else 'secret'}), "
            f"authority={config.authority}"
        )
        self.app = msal.ConfidentialClientApplication(
            client_id=config.client_id,
            client_credential=self._client_credential(config),
            authority=config.authority,
        )

    @staticmethod
    def _client_credential(config: GraphConfig) -> Union[str, dict[str, Any]]:
        # Secret wins when both are present
        if config.client_secret:
            return config.client_secret

        if not config.certificate_thumbprint:
            raise ConfigurationError(
                "A certificate thumbprint is required with a certificate"
            )
        try:
            private_key = config.certificate_path.read_text()
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read certificate {config.certificate_path}: {e}"
            ) from e
        return {
            "private_key": private_key,
            "thumbprint": config.certificate_thumbprint,
        }

    def get_access_token(self) -> str:
        """
        Acquire an app-only token.

        MSAL keeps the token in its in-memory cache and only calls the
        token endpoint again once it is close to expiry.
        """
        result = self.app.acquire_token_for_client(scopes=self.scopes)

        if result and "access_token" in result:
            logger.debug("Token acquired via client credentials flow")
            return result["access_token"]

        error_desc = (result or {}).get("error_description", "Unknown error")
        raise AuthenticationError(f"Client credentials authentication failed: {error_desc}")
