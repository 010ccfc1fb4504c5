"""Configuration management for Exchange Graph Tool."""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

# Graph $batch accepts at most 20 requests per envelope
MAX_BATCH_SIZE = 20

# Tenant used when none is given: any Entra ID organisation
MULTI_TENANT = "common"


class GraphConfig(BaseSettings):
    """Microsoft Graph application (client credentials) configuration."""

    client_id: Optional[str] = Field(None, validation_alias="GRAPH_CLIENT_ID")
    tenant_id: Optional[str] = Field(None, validation_alias="GRAPH_TENANT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="GRAPH_CLIENT_SECRET")
    certificate_path: Optional[Path] = Field(
        None, validation_alias="GRAPH_CERTIFICATE_PATH"
    )
    certificate_thumbprint: Optional[str] = Field(
        None, validation_alias="GRAPH_CERTIFICATE_THUMBPRINT"
    )

    authority_host: str = Field(
        default="https://login.microsoftonline.com",
        validation_alias="GRAPH_AUTHORITY_HOST",
    )
    base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        validation_alias="GRAPH_BASE_URL",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_parse_none_str="",  # Treat empty string as None
    )

    @property
    def authority(self) -> str:
        tenant_id = self.tenant_id or MULTI_TENANT
        return f"{self.authority_host.rstrip('/')}/{tenant_id}"

    @property
    def scope(self) -> str:
        """The .default scope of the Graph resource behind base_url."""
        # https://graph.microsoft.com/v1.0 -> https://graph.microsoft.com/.default
        scheme, _, rest = self.base_url.partition("://")
        host = rest.split("/", 1)[0]
        return f"{scheme}://{host}/.default"


class AppConfig(BaseSettings):
    """Application configuration."""

    graph: GraphConfig = Field(default_factory=GraphConfig)

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, validation_alias="LOG_FILE")

    # Batching
    batch_size: int = Field(default=MAX_BATCH_SIZE, validation_alias="BATCH_SIZE")
    request_timeout: float = Field(default=60.0, validation_alias="REQUEST_TIMEOUT")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_parse_none_str="",
    )
