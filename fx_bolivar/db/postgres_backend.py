"""PostgreSQL backend strategy."""

from __future__ import annotations

from typing import Any

from fx_bolivar.db.relational_backend import RelationalBackend


class PostgresBackend(RelationalBackend):
    """Relational backend for PostgreSQL.

    Hosted Postgres instances drop idle connections, so pooled connections
    are pinged before use.
    """

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        engine_kwargs.setdefault("pool_pre_ping", True)
        super().__init__(url, **engine_kwargs)


__all__ = ["PostgresBackend"]
