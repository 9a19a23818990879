"""对外 API 服务模块。

提供简化的函数接口供上层应用（聊天路由等）调用：
把前端传来的消息历史交给默认的 Foundry 模型，返回一次性结果或事件流。
事件流到具体线协议（SSE、data stream 等）的转换由上层 HTTP 层负责。
"""

import json
import threading
from typing import Any, Dict, Iterator, Optional, Sequence

from foundry_core.agents.foundry_agent import FoundryChatModel, PromptMessage
from foundry_core.config.settings import settings
from foundry_core.domain.exceptions import AbortError, ValidationError
from foundry_core.domain.models import StreamEvent
from foundry_core.infrastructure.logging.logger import logger
from foundry_core.providers import foundry_provider


_model: Optional[FoundryChatModel] = None


def get_default_model() -> FoundryChatModel:
    """获取默认的 Foundry 模型实例（单例，thread 在首次调用时创建并复用）。"""
    global _model
    if _model is None:
        if not settings.foundry_agent_id:
            raise ValidationError(code="MISSING_AGENT_ID", message="FOUNDRY_AGENT_ID not set")
        _model = foundry_provider.chat(settings.foundry_agent_id)
    return _model


def generate_chat(
    messages: Sequence[PromptMessage],
    tools: Optional[Sequence[Any]] = None,
    provider_options: Optional[Dict[str, Any]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """运行一次非流式对话。

    Args:
        messages: 完整的消息历史（只有最后一条会发送给 agent）
        tools: 工具定义（agent 的工具在 Foundry 侧配置，这里只产生 warning）
        provider_options: 额外选项，如 {"foundry": {"poll_interval_ms": 500}}
        cancel_event: 取消信号

    Returns:
        包含文本、结束原因、用量、thread ID 与 warnings 的字典

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    try:
        model = get_default_model()
        result = model.generate(
            messages,
            cancel_event=cancel_event,
            tools=tools,
            provider_options=provider_options,
        )
        return {
            "text": result.text,
            "finish_reason": result.finish_reason,
            "usage": {
                "prompt_tokens": result.usage.prompt_tokens,
                "completion_tokens": result.usage.completion_tokens,
            },
            "thread_id": result.raw_settings.get("thread_id"),
            "warnings": [w.__dict__ for w in result.warnings],
        }
    except AbortError:
        raise
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "error": str(e),
            "error_type": type(e).__name__,
        }})
        raise


def stream_chat(
    messages: Sequence[PromptMessage],
    tools: Optional[Sequence[Any]] = None,
    provider_options: Optional[Dict[str, Any]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[StreamEvent]:
    """运行一次流式对话，返回 StreamEvent 序列（metadata → text-delta* → finish|error）。"""
    model = get_default_model()
    return model.stream(
        messages,
        cancel_event=cancel_event,
        tools=tools,
        provider_options=provider_options,
    )


def get_error_message(error: Any) -> str:
    """把任意错误转换为可展示给前端的文本。"""
    if error is None:
        return "unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        return getattr(error, "message", None) or str(error)
    return json.dumps(error, ensure_ascii=False, default=str)
