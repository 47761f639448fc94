from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Any, Dict, MutableMapping, Optional, TextIO, Tuple


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "t": 169..., "lvl": "INFO", "name": "system_d", "msg": "text", "extra": {...} }

    Structured fields travel as `extra={"extra": {...}}` on the log call.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "t": int(record.created * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict) and fields:
            payload["extra"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # numpy scalars, enums, paths
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None, *, force: bool = False, stream: Optional[TextIO] = None) -> None:
    """
    Configure the root logger once with JSON lines on stderr (stdout is kept
    for CLI output).

    Level precedence: explicit `level`, then env LOG_LEVEL, then INFO. Unknown
    names fall back to INFO. `force=True` reconfigures an already configured
    root, which the CLI uses to honour --log-level.
    """
    root = logging.getLogger()
    if getattr(root, "_unveal_configured", False) and not force:
        return

    lvl_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = logging.getLevelName(lvl_name)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    root._unveal_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Subsystem logger ("system_a" .. "system_d"); configures root on first use."""
    setup_logging()
    return logging.getLogger(name)


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that stamps bound fields (query id, mode) into every
    record's structured `extra`, merged under the call's own fields.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        call_extra = kwargs.pop("extra", None) or {}
        fields = dict(self.extra or {})
        fields.update(call_extra.get("extra", {}))
        kwargs["extra"] = {"extra": fields}
        return msg, kwargs


def bind(logger: logging.Logger, **context: Any) -> ContextLogger:
    """e.g. qlog = bind(log, query=ctx.query_id, mode="landmark")"""
    return ContextLogger(logger, context)
