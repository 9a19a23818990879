"""结构化日志。

每条记录输出为一行 JSON。调用上下文（trace_id / agent_id / thread_id / run_id 等）
提升为顶层字段，方便按一次调用或一个 run 检索；其余字段放在 "fields" 下。
开启 log_redact_content 时，助手/用户文本类字段只记录长度。
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from foundry_core.config.settings import settings


LOGGER_NAME = "foundry_core"

CONTEXT_FIELDS = ("trace_id", "provider", "agent_id", "thread_id", "run_id", "mode")

# 可能包含对话内容的字段
CONTENT_FIELDS = frozenset({"content", "text", "fragment", "prompt"})


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            fields = dict(extra)
            for key in CONTEXT_FIELDS:
                if key in fields:
                    payload[key] = fields.pop(key)
            if settings.log_redact_content:
                fields = {k: _redact(v) if k in CONTENT_FIELDS else v for k, v in fields.items()}
            if fields:
                payload["fields"] = fields
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _redact(value: Any) -> str:
    return f"<redacted len={len(value) if isinstance(value, str) else len(str(value))}>"


def setup_logger(log_dir: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger
    path = Path(log_dir or settings.log_dir)
    path.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(path / "foundry.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    return logger


def log_with_context(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
    """按调用上下文输出一条结构化日志；fields 中的同名键覆盖上下文。"""

    payload = dict(log_ctx)
    payload.update(fields)
    logger.log(level, message, extra={"extra": payload})


logger = setup_logger()
