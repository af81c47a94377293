"""Process-wide handle passed into every component.

Built once at process start (CLI command, scheduler, worker) and handed to
component constructors; tests build one around an in-memory database.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import duckdb

from tipster import db
from tipster.config import Settings, settings as load_settings
from tipster.counters import CounterStore, counter_store_from_settings


@dataclass
class AppContext:
    base_con: duckdb.DuckDBPyConnection
    counters: Optional[CounterStore]
    settings: Settings = field(default_factory=Settings)
    clock: Callable[[], datetime] = db.utcnow

    def connect(self) -> duckdb.DuckDBPyConnection:
        """New connection (own transaction scope) to the shared database."""
        return self.base_con.cursor()

    def now(self) -> datetime:
        return self.clock()

    def close(self) -> None:
        self.base_con.close()

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> "AppContext":
        s = s or load_settings()
        return cls(
            base_con=db.connect(s.db_path),
            counters=counter_store_from_settings(s),
            settings=s,
        )
