from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


DEFAULT_MAX_EXECUTION_DEPTH = 50
DEFAULT_TRAVERSAL = "linear"
DEFAULT_WORKFLOW_DB = "data/workflows.db"
ALLOWED_TRAVERSALS = {"linear", "worklist"}


@dataclass(slots=True)
class AppSettings:
    max_execution_depth: int = DEFAULT_MAX_EXECUTION_DEPTH
    traversal: str = DEFAULT_TRAVERSAL
    run_deadline_seconds: float = 0.0
    workflow_db_path: Path = Path(DEFAULT_WORKFLOW_DB)
    llm_retry_attempts: int = 3
    llm_retry_backoff_seconds: float = 1.5



def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default



def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_choice(name: str, default: str, allowed: set[str]) -> str:
    value = (os.getenv(name) or "").strip().lower()
    if value in allowed:
        return value
    return default



def load_settings() -> AppSettings:
    load_dotenv()

    workflow_db_path = Path(os.getenv("CONTENT_FLOW_WORKFLOW_DB", DEFAULT_WORKFLOW_DB)).expanduser()

    settings = AppSettings(
        max_execution_depth=max(1, _get_int("CONTENT_FLOW_MAX_EXECUTION_DEPTH", DEFAULT_MAX_EXECUTION_DEPTH)),
        traversal=_get_choice("CONTENT_FLOW_TRAVERSAL", DEFAULT_TRAVERSAL, ALLOWED_TRAVERSALS),
        run_deadline_seconds=max(0.0, _get_float("CONTENT_FLOW_RUN_DEADLINE_SECONDS", 0.0)),
        workflow_db_path=workflow_db_path,
        llm_retry_attempts=max(1, _get_int("CONTENT_FLOW_LLM_RETRY_ATTEMPTS", 3)),
        llm_retry_backoff_seconds=_get_float("CONTENT_FLOW_LLM_RETRY_BACKOFF_SECONDS", 1.5),
    )

    settings.workflow_db_path.parent.mkdir(parents=True, exist_ok=True)
    return settings
