from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_DB_PATH = "data/treasuryforge.sqlite"


@dataclass(frozen=True)
class SqliteConfig:
    """Connection configuration.

    `database_url` is a SQLAlchemy URL; `from_env` builds it from
    TREASURYFORGE_DB_PATH and creates the parent directory.
    """

    database_url: str

    @classmethod
    def from_env(cls) -> SqliteConfig:
        db_path = Path(os.environ.get("TREASURYFORGE_DB_PATH", DEFAULT_DB_PATH))
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(database_url=f"sqlite:///{db_path}")

    @classmethod
    def in_memory(cls) -> SqliteConfig:
        return cls(database_url="sqlite://")
