from __future__ import annotations

import logging
import os


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"



def configure_logging(level_name: str | None = None) -> None:
    resolved = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, resolved, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # LangChain model adapters are chatty at INFO.
    logging.getLogger("langchain_core").setLevel(logging.WARNING)
