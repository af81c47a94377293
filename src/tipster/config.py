from __future__ import annotations
import functools
import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

def _get(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name, default)
    return v if v not in ("", None) else default

@dataclass(frozen=True)
class Settings:
    db_path: str = "./data/tipster.duckdb"
    counter_db_path: str | None = "./data/counters.db"

    api_football_key: str | None = None
    api_football_base: str = "https://v3.football.api-sports.io"
    api_football_daily_limit: int = 100
    http_timeout: float = 15.0

    model_failure_threshold: int = 3
    model_recovery_cooldown_minutes: int = 60
    quota_strategy: str = "linear"

    def __repr__(self) -> str:
        def _mask(v: str | None) -> str:
            if not v:
                return repr(v)
            return repr(v[:4] + "***") if len(v) > 4 else repr("***")
        fields = ", ".join(
            f"{f}={_mask(getattr(self, f)) if 'key' in f.lower() or 'token' in f.lower() else repr(getattr(self, f))}"
            for f in self.__dataclass_fields__
        )
        return f"Settings({fields})"

@functools.lru_cache(maxsize=1)
def settings() -> Settings:
    counter_path = _get("COUNTER_DB_PATH", "./data/counters.db")
    if counter_path and counter_path.lower() in ("off", "none", "disabled"):
        counter_path = None

    return Settings(
        db_path=_get("DB_PATH", "./data/tipster.duckdb") or "./data/tipster.duckdb",
        counter_db_path=counter_path,
        api_football_key=_get("API_FOOTBALL_KEY"),
        api_football_base=_get("API_FOOTBALL_BASE", "https://v3.football.api-sports.io") or "https://v3.football.api-sports.io",
        api_football_daily_limit=int(_get("API_FOOTBALL_DAILY_LIMIT", "100") or "100"),
        http_timeout=float(_get("HTTP_TIMEOUT", "15") or "15"),
        model_failure_threshold=int(_get("MODEL_FAILURE_THRESHOLD", "3") or "3"),
        model_recovery_cooldown_minutes=int(_get("MODEL_RECOVERY_COOLDOWN_MINUTES", "60") or "60"),
        quota_strategy=_get("QUOTA_STRATEGY", "linear") or "linear",
    )
