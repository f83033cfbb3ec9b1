"""SQLite backend strategy implementation."""

from __future__ import annotations

from pathlib import Path

from fx_bolivar.db import DEFAULT_SQLITE_DB_PATH
from fx_bolivar.db.relational_backend import RelationalBackend


class SQLiteBackend(RelationalBackend):
    """Backend strategy that stores history and subscribers in a SQLite file."""

    def __init__(self, db_path: str | Path = DEFAULT_SQLITE_DB_PATH) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(
            f"sqlite:///{self.db_path.as_posix()}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
        # SQLite has no server to provision; create tables eagerly.
        self.ensure_schema()


__all__ = ["SQLiteBackend"]
