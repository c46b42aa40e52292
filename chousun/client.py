"""
chousun Client

Entry object tying configuration, the query builder and the HTTP transport
together.
"""

import logging
from typing import Any, Optional, Sequence, Union

from chousun.config import ClientConfig, ConnectionConfig, Driver
from chousun.core.statement import Statement
from chousun.exceptions import ConfigurationError
from chousun.query.builder import Builder
from chousun.query.grammar import Grammar
from chousun.transport.http import HttpTransport

logger = logging.getLogger(__name__)


class Chousun:
    """
    ClickHouse client.

    Example:
        ch = Chousun()  # CH_* environment variables

        ch = Chousun(ConnectionConfig(host="clickhouse.local", password="secret"))

        rows = ch.table("events").where("id", ">", 5).order_by("id").limit(10).get().rows()

        ch.table("events").insert([{"id": 1, "name": "a"}, {"id": 2, "name": "b"}])
    """

    def __init__(
        self,
        config: Optional[Union[ClientConfig, ConnectionConfig, dict]] = None,
        connection: Optional[str] = None,
    ):
        """
        Initialize the client.

        Args:
            config: ClientConfig (defaults to one read from the environment),
                a single ConnectionConfig, or a dict of ConnectionConfig fields
            connection: Named connection to use from a ClientConfig

        Raises:
            ConfigurationError: Unknown connection name or driver
        """
        if isinstance(config, dict):
            config = ConnectionConfig(**config)

        if isinstance(config, ConnectionConfig):
            self.config = config
        else:
            self.config = (config or ClientConfig()).resolve(connection)

        self._grammar = Grammar()
        self._transport = self.connect()

    def connect(self) -> HttpTransport:
        """Build the transport for the configured driver."""
        config = self.config

        if config.driver != Driver.HTTP.value:
            raise ConfigurationError(
                f"Unsupported driver: {config.driver}. Available: {', '.join(d.value for d in Driver)}"
            )

        transport = HttpTransport(
            host=config.host,
            port=config.port,
            database=config.database,
            username=config.username,
            password=config.password,
            auth_method=config.auth_method,
            connect_timeout=config.connect_timeout,
        )

        settings = transport.settings()
        settings.set_https(config.https)
        settings.set_max_execution_time(config.timeout)
        settings.set_readonly_user(config.readonly_user)
        settings.apply(config.settings)

        if config.ssl_ca:
            transport.set_ssl_ca(config.ssl_ca)

        logger.info(f"Connected to {transport.uri()} (database={config.database})")
        return transport

    @property
    def transport(self) -> HttpTransport:
        return self._transport

    @property
    def grammar(self) -> Grammar:
        return self._grammar

    def query(self) -> Builder:
        return Builder(self._transport, self._grammar)

    def table(self, table: Any) -> Builder:
        return self.query().from_(table)

    def select(self, sql: str, bindings: Optional[Sequence[Any]] = None, **kwargs) -> Statement:
        return self._transport.select(sql, bindings, **kwargs)

    def write(self, sql: str, bindings: Optional[Sequence[Any]] = None, exception: bool = True) -> Statement:
        return self._transport.write(sql, bindings, exception=exception)

    def ping(self) -> bool:
        return self._transport.ping()

    def close(self):
        self._transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
