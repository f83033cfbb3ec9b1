"""Helpers for working with the bundled SQLite database."""

from __future__ import annotations

from pathlib import Path
from typing import Final

__all__ = ["DEFAULT_SQLITE_DB_PATH"]

# Resolved next to this module so the default database does not depend on the
# working directory; SQLite needs an absolute path once installed.
DEFAULT_SQLITE_DB_PATH: Final[Path] = Path(__file__).resolve().with_name("fx_bolivar.db")
