from .config import SqliteConfig
from .stores import SqliteStores

__all__ = ["SqliteConfig", "SqliteStores"]
