from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./docvault.db"
    acl_database_url: str = ""
    acl_backend: str = "sql"
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_acl_table: str = "access_control_list"
    trash_retention_days: int = 30
    cascade_timeout_seconds: int = 30
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL", cls.database_url)
        return cls(
            database_url=database_url,
            # ACL rows live in their own persistence unit; default to the same database.
            acl_database_url=os.getenv("ACL_DATABASE_URL", "") or database_url,
            acl_backend=os.getenv("ACL_BACKEND", cls.acl_backend).lower(),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_KEY", ""),
            supabase_acl_table=os.getenv("SUPABASE_ACL_TABLE", cls.supabase_acl_table),
            trash_retention_days=_env_int("TRASH_RETENTION_DAYS", cls.trash_retention_days),
            cascade_timeout_seconds=_env_int("CASCADE_TIMEOUT_SECONDS", cls.cascade_timeout_seconds),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
