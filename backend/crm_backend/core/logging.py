"""Loguru setup: one JSON line per event on stdout."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from sys import stdout
from typing import Any

from loguru import logger

from crm_backend.core.config import settings

# Background fan-outs are created inside a request, so asyncio copies these
# into the task and its log lines keep the submitting request's id.
request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_ctx_var: ContextVar[str] = ContextVar("user_id", default="-")

NOISY_LOGGERS = ("aiomysql", "aiosqlite", "sqlalchemy.engine", "urllib3")


def _patch_record(record: dict[str, Any]) -> None:
    record["extra"].setdefault("request_id", request_id_ctx_var.get())
    record["extra"].setdefault("user_id", user_id_ctx_var.get())


def setup_logging() -> None:
    level = settings.LOG_LEVEL.upper()
    logging.basicConfig(level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logger.remove()
    logger.configure(patcher=_patch_record)
    logger.add(stdout, level=level, enqueue=True, backtrace=False, diagnose=False, serialize=True)
