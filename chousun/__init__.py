"""
chousun

A ClickHouse client over the HTTP interface: a fluent query builder, a SQL
grammar for the ClickHouse dialect and a request pipeline with streaming,
compression, progress reporting and asynchronous batching.

Example:
    from chousun import Chousun

    ch = Chousun()

    statement = ch.table("events").where("id", "=", 5).get()
    for row in statement.rows():
        print(row)

    ch.table("events").insert({"id": 6, "name": "signup"})
"""

__version__ = "1.0.0"

from .client import Chousun
from .config import ClientConfig, ConnectionConfig, Driver
from .core.files import WhereInFile, WriteToFile
from .core.settings import Settings
from .core.sql import StatementText
from .core.statement import Statement
from .exceptions import ChousunError, ConfigurationError, QueryError, TransportError
from .query.builder import Builder
from .query.expression import Expression, raw
from .query.grammar import Grammar
from .transport.http import HttpTransport
from .transport.request import AuthMethod
from .transport.stream import StreamRead, StreamWrite

__all__ = [
    "Chousun",
    "ClientConfig",
    "ConnectionConfig",
    "Driver",
    "WhereInFile",
    "WriteToFile",
    "Settings",
    "StatementText",
    "Statement",
    "ChousunError",
    "ConfigurationError",
    "QueryError",
    "TransportError",
    "Builder",
    "Expression",
    "raw",
    "Grammar",
    "HttpTransport",
    "AuthMethod",
    "StreamRead",
    "StreamWrite",
]
