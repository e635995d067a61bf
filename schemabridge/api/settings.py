"""
HTTP binding configuration for SchemaBridge.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class HttpSettings(BaseSettings):
    """HTTP server configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8443, description="Bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins",
    )

    access_log: bool = Field(default=False, description="Emit uvicorn access log")

    model_config = {"env_prefix": "SCHEMABRIDGE_HTTP_"}

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"
