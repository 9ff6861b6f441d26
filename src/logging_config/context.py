"""Log context bound through contextvars.

Every record logged inside a LogContext carries its request, user and
session identifiers, including records from tasks spawned inside it.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any


_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_user_id_var: ContextVar[str] = ContextVar("user_id", default="")
_session_id_var: ContextVar[str] = ContextVar("session_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_request_id() -> str:
    return str(uuid.uuid4())


def get_context_dict() -> dict[str, Any]:
    """All bound context values, empty ones omitted."""
    ctx = {}
    for key, var in (
        ("request_id", _request_id_var),
        ("user_id", _user_id_var),
        ("session_id", _session_id_var),
    ):
        value = var.get()
        if value:
            ctx[key] = value
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class LogContext:
    """Context manager binding identifiers onto log records.

    Example:
        with LogContext(user_id="u-1", session_id="s-9"):
            logger.info("session opened")  # carries user_id and session_id
    """

    request_id: str = ""
    user_id: str = ""
    session_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    _tokens: list = field(default_factory=list, repr=False)

    def __enter__(self) -> "LogContext":
        self._tokens = [
            (_request_id_var, _request_id_var.set(self.request_id)),
            (_user_id_var, _user_id_var.set(self.user_id)),
            (_session_id_var, _session_id_var.set(self.session_id)),
            (_extra_context_var, _extra_context_var.set(self.extra.copy())),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        # Restore the outer context so nested scopes compose.
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the active context."""
        _extra_context_var.set({**_extra_context_var.get(), **kwargs})
        self.extra.update(kwargs)
