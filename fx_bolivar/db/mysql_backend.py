"""MySQL backend strategy."""

from __future__ import annotations

from typing import Any

from fx_bolivar.db.relational_backend import RelationalBackend

# MySQL closes connections idle for longer than ``wait_timeout`` (8h default).
POOL_RECYCLE_SECONDS = 3600


class MySQLBackend(RelationalBackend):
    """Relational backend for MySQL/MariaDB engines."""

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        engine_kwargs.setdefault("pool_recycle", POOL_RECYCLE_SECONDS)
        engine_kwargs.setdefault("pool_pre_ping", True)
        super().__init__(url, **engine_kwargs)


__all__ = ["MySQLBackend"]
