"""
Connection-scoped engine settings.

Settings is owned by one transport for its lifetime and is mutated in place
(not safe for concurrent writers). Requests never modify it: they snapshot
effective_parameters() into their own URL.
"""

import uuid
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field

# Options a read-only user is not allowed to send.
READONLY_USER_STRIPPED = ("extremes", "readonly", "enable_http_compression", "max_execution_time")

# Client-side flags that never go on the wire.
CLIENT_ONLY = ("https",)


class Settings(BaseModel):
    """Engine options sent with every request as URL parameters."""

    database: str = Field(default="default")
    extremes: bool = Field(default=False)
    readonly: int = Field(default=1, description="0 = writes allowed, 1/2 = read-only levels")
    max_execution_time: int = Field(default=20, description="Overall request timeout in seconds")
    enable_http_compression: bool = Field(default=False)
    https: bool = Field(default=False)
    session_id: Optional[str] = None
    readonly_user: bool = Field(default=False, description="Connection user cannot change settings")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Any other engine setting")

    model_config = {"validate_assignment": True}

    # -------------------------------------------------------------------------
    # Generic access
    # -------------------------------------------------------------------------

    def set(self, key: str, value: Any) -> "Settings":
        if key in type(self).model_fields and key != "extra":
            setattr(self, key, value)
        else:
            self.extra[key] = value
        return self

    def get(self, key: str, default: Any = None) -> Any:
        if key in type(self).model_fields and key != "extra":
            return getattr(self, key)
        return self.extra.get(key, default)

    def is_set(self, key: str) -> bool:
        if key in type(self).model_fields and key != "extra":
            return getattr(self, key) is not None
        return key in self.extra

    def apply(self, values: Dict[str, Any]) -> "Settings":
        for key, value in values.items():
            self.set(key, value)
        return self

    # -------------------------------------------------------------------------
    # Named options
    # -------------------------------------------------------------------------

    def set_database(self, database: str) -> "Settings":
        self.database = database
        return self

    @property
    def timeout(self) -> int:
        return self.max_execution_time

    def set_max_execution_time(self, seconds: int) -> "Settings":
        self.max_execution_time = seconds
        return self

    def set_enable_http_compression(self, flag: bool) -> "Settings":
        self.enable_http_compression = flag
        return self

    def set_https(self, flag: bool = True) -> "Settings":
        self.https = flag
        return self

    def set_readonly(self, level: int) -> "Settings":
        self.readonly = level
        return self

    def set_readonly_user(self, flag: bool = True) -> "Settings":
        self.readonly_user = flag
        return self

    def make_session_id(self) -> str:
        """Start a server-side session; requests then carry session_id."""
        self.session_id = uuid.uuid4().hex
        return self.session_id

    # -------------------------------------------------------------------------
    # Wire parameters
    # -------------------------------------------------------------------------

    def to_parameters(self) -> Dict[str, Any]:
        """All settings as URL parameter values (bools as 0/1, unset omitted)."""
        params: Dict[str, Any] = {
            "database": self.database,
            "extremes": self.extremes,
            "readonly": self.readonly,
            "max_execution_time": self.max_execution_time,
            "enable_http_compression": self.enable_http_compression,
            "https": self.https,
        }
        if self.session_id:
            params["session_id"] = self.session_id
        params.update(self.extra)

        return {
            key: int(value) if isinstance(value, bool) else value
            for key, value in params.items()
            if value is not None
        }

    def effective_parameters(
        self,
        request_params: Optional[Dict[str, Any]] = None,
        exclude: Tuple[str, ...] = (),
    ) -> Dict[str, Any]:
        """
        Parameters for one request: request params over the persistent ones.

        A read-only user never sends extremes, readonly, enable_http_compression
        or max_execution_time; the https flag is never sent. Keys in exclude
        are dropped as well.
        """
        params = self.to_parameters()
        for key, value in (request_params or {}).items():
            params[key] = int(value) if isinstance(value, bool) else value

        stripped = CLIENT_ONLY + tuple(exclude) + (READONLY_USER_STRIPPED if self.readonly_user else ())
        for key in stripped:
            params.pop(key, None)

        return params
