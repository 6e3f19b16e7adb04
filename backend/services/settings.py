"""Process configuration resolved from the environment (and ``.env``) at startup."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./dashboard.db"

    # Completion service
    completion_base_url: str = "http://localhost:8000"
    completion_chat_path: str = "/api/chat"
    completion_api_key: Optional[str] = None
    completion_timeout_s: float = 30.0
    completion_max_attempts: int = 3
    completion_backoff_base_s: float = 1.0
    sql_temperature: float = 0.3
    sql_max_tokens: int = 500

    # Query execution
    db_query_timeout_s: float = 20.0
    db_max_rows: int = 1000
    pinned_replay_timeout_s: float = 10.0

    # Chart inference
    strict_numeric: bool = False
    validation_feedback_retries: int = 0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            completion_base_url=os.getenv("COMPLETION_BASE_URL", cls.completion_base_url).rstrip("/"),
            completion_chat_path=os.getenv("COMPLETION_CHAT_PATH", cls.completion_chat_path),
            completion_api_key=(os.getenv("COMPLETION_API_KEY") or "").strip() or None,
            completion_timeout_s=max(1.0, float(os.getenv("COMPLETION_TIMEOUT_S", "30"))),
            completion_max_attempts=max(1, int(os.getenv("COMPLETION_MAX_ATTEMPTS", "3"))),
            completion_backoff_base_s=max(0.0, float(os.getenv("COMPLETION_BACKOFF_BASE_S", "1.0"))),
            sql_temperature=float(os.getenv("SQL_TEMPERATURE", "0.3")),
            sql_max_tokens=max(16, int(os.getenv("SQL_MAX_TOKENS", "500"))),
            db_query_timeout_s=max(1.0, float(os.getenv("DB_QUERY_TIMEOUT_S", "20"))),
            db_max_rows=max(1, int(os.getenv("DB_MAX_ROWS", "1000"))),
            pinned_replay_timeout_s=max(0.5, float(os.getenv("PINNED_REPLAY_TIMEOUT_S", "10"))),
            strict_numeric=_env_bool("CHART_STRICT_NUMERIC"),
            validation_feedback_retries=max(0, int(os.getenv("VALIDATION_FEEDBACK_RETRIES", "0"))),
        )
