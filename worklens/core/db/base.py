"""
Base repository - shared connection handling for all repositories
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List


class BaseRepository:
    """Base class for SQLite-backed repositories"""

    def __init__(self, db_path: Path):
        self.db_path = db_path

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        """Open a connection with dict-style rows; closed on exit"""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    def _dump_list(values: List[Any]) -> str:
        return json.dumps(list(values), ensure_ascii=False)

    @staticmethod
    def _load_list(raw: Any) -> List[Any]:
        if not raw:
            return []
        return json.loads(raw)
