"""终态 run 的 token 用量提取。"""

from typing import Any

from foundry_core.domain.exceptions import ValidationError
from foundry_core.domain.models import ChatUsage, Run


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def collect_usage(run: Run) -> ChatUsage:
    """读取终态 run 的 prompt/completion token 数，缺失字段按 0 处理。

    非终态 run 上的用量不可信，直接拒绝。
    """

    if not run.is_terminal:
        raise ValidationError(
            code="RUN_NOT_TERMINAL",
            message=f"Usage requested for run {run.id} in status {run.status!r}",
        )
    usage_raw = run.usage or {}
    prompt_tokens = _as_int(usage_raw.get("prompt_tokens"))
    completion_tokens = _as_int(usage_raw.get("completion_tokens"))
    return ChatUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )
