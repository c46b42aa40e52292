"""
Configuration Management

Connection settings loaded with Pydantic Settings from CH_* environment
variables (or a .env file).

    CH_CONNECTION   default connection name ("default")
    CH_DRIVER       driver, only "http" is supported
    CH_HOST         127.0.0.1
    CH_PORT         8123
    CH_DATABASE     default
    CH_USERNAME     default
    CH_PASSWORD
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chousun.exceptions import ConfigurationError
from chousun.transport.request import AuthMethod


class Driver(str, Enum):
    """Supported connection drivers."""
    HTTP = "http"


class ConnectionConfig(BaseModel):
    """One named connection."""

    driver: str = Field(default=Driver.HTTP.value)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8123)
    database: str = Field(default="default")
    username: str = Field(default="default")
    password: Optional[str] = None
    https: bool = Field(default=False)
    auth_method: AuthMethod = Field(default=AuthMethod.HEADER)
    connect_timeout: float = Field(default=5, description="Connect timeout in seconds")
    timeout: int = Field(default=20, description="max_execution_time in seconds")
    ssl_ca: Optional[str] = Field(default=None, description="CA bundle for HTTPS")
    readonly_user: bool = Field(default=False)
    settings: Dict[str, Any] = Field(default_factory=dict, description="Extra engine settings")


class ClientConfig(BaseSettings):
    """Client configuration: the default connection plus optional named ones."""

    connection: str = Field(default="default", description="Name of the default connection")

    driver: str = Field(default=Driver.HTTP.value)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8123)
    database: str = Field(default="default")
    username: str = Field(default="default")
    password: Optional[str] = None
    https: bool = Field(default=False)

    connections: Dict[str, ConnectionConfig] = Field(default_factory=dict)

    model_config = SettingsConfigDict(
        env_prefix="CH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    def resolve(self, name: Optional[str] = None) -> ConnectionConfig:
        """
        Connection settings for name (the default connection when omitted).

        Raises:
            ConfigurationError: When name is neither configured nor the default
        """
        name = name or self.connection

        if name in self.connections:
            return self.connections[name]

        if name == self.connection:
            return ConnectionConfig(
                driver=self.driver,
                host=self.host,
                port=self.port,
                database=self.database,
                username=self.username,
                password=self.password,
                https=self.https,
            )

        raise ConfigurationError(
            f"Unknown connection: {name}. Available: {', '.join([self.connection, *self.connections])}"
        )
