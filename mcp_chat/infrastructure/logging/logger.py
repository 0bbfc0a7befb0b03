import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, MutableMapping, Tuple

from mcp_chat.config.settings import settings

LOGGER_NAME = "mcp_chat"
LOG_FILE = "mcp_chat.log"


class JsonFormatter(logging.Formatter):
    """每条记录输出一行 JSON，record.extra 中的字段平铺到顶层。"""

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if settings.log_redact_content:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ContextLogger(logging.LoggerAdapter):
    """把绑定的上下文字段（如 trace_id）合并进每条记录的 extra。

    调用方照常传 extra={"extra": {...}}，同名字段以调用方为准。
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        outer = dict(kwargs.get("extra") or {})
        fields = dict(self.extra)
        fields.update(outer.get("extra") or {})
        outer["extra"] = fields
        kwargs["extra"] = outer
        return msg, kwargs


def setup_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    logger.propagate = False
    if logger.handlers:
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / LOG_FILE, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    return logger


def bind(**fields: Any) -> ContextLogger:
    """返回携带固定上下文字段的 logger。"""

    return ContextLogger(logger, fields)


logger = setup_logger()
