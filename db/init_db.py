#!/usr/bin/env python3
"""Initialize the embedded agent database.

Creates the tables from treasury/storage/sqlite/schema.sql in the SQLite file
pointed to by TREASURYFORGE_DB_PATH (default: data/treasuryforge.sqlite).

Usage:
  python -m db.init_db
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from treasury.storage.sqlite.config import SqliteConfig  # noqa: E402
from treasury.storage.sqlite.stores import SqliteStores  # noqa: E402

logger = logging.getLogger(__name__)


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    stores = SqliteStores(config=SqliteConfig.from_env())
    count = stores.init_schema()
    logger.info(f"Database schema applied ({count} statements)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
