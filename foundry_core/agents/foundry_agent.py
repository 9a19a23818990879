"""Foundry agent 生成门面。

把 “创建消息 → 启动 run → 轮询/订阅直到终态” 这一异步作业模型，
转换为通用文本生成调用方期望的两种形态：

- generate: 阻塞直到 run 终态，返回完整文本与 token 用量。
- stream: 依次产出 metadata、若干 text-delta，最后恰好一个 finish 或 error。

门面本身不关心底层用的是事件流还是快照轮询，两者共用 ContentReconciler。
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Union
from urllib.parse import urlparse
from uuid import uuid4
import logging
import threading

from foundry_core.config.settings import RunMode, settings
from foundry_core.domain.exceptions import AbortError, ApiError, RunFailedError, ValidationError
from foundry_core.domain.models import (
    AUTO_THREAD,
    CallWarning,
    ChatMessage,
    ChatSession,
    GenerateResult,
    MessageDelta,
    Run,
    StreamEvent,
    ThreadMessage,
)
from foundry_core.infrastructure.logging.logger import log_with_context, logger
from foundry_core.providers.base import AgentsClient
from foundry_core.providers.foundry_client import FoundryClient
from foundry_core.runtime import ContentReconciler, RunOrchestrator, SessionStore, collect_usage, raise_if_cancelled


PROVIDER_NAME = "azure.ai-foundry"

PromptMessage = Union[ChatMessage, Mapping[str, Any]]


@dataclass
class ChatSettings:
    """单个模型实例的调用设置。"""

    poll_interval_ms: Optional[int] = None  # 为空时使用全局配置（默认 1000ms）
    run_mode: Optional[RunMode] = None


@dataclass
class FoundryClientOptions:
    """构造模型时的传输层选项。

    - provider: Provider 名称，用于日志与 model 标识。
    - base_url: 连接串或项目 endpoint。
    - credential: 可选的 azure-identity credential，为空时使用 DefaultAzureCredential。
    - client: 预先构造好的 AgentsClient（测试或自定义传输时使用）。
    - generate_id: 生成 metadata 事件 ID 的函数。
    """

    provider: str = PROVIDER_NAME
    base_url: str = ""
    credential: Any = None
    client: Optional[AgentsClient] = None
    generate_id: Callable[[], str] = field(default=lambda: f"foundry-response-{uuid4().hex}")


@dataclass
class _Turn:
    """一次调用内的可变状态。"""

    thread_id: str
    reconciler: ContentReconciler
    orchestrator: RunOrchestrator
    log_ctx: Dict[str, Any]
    run_id: Optional[str] = None
    run: Optional[Run] = None
    messages: List[ThreadMessage] = field(default_factory=list)


class FoundryChatModel:
    """调用 Foundry agent 的文本生成模型。

    同一个实例（及其 ChatSession）在多轮之间复用；
    传输层客户端在首次调用时才构造，之后一直复用。
    """

    specification_version = "v1"
    supports_image_urls = False

    def __init__(
        self,
        session: ChatSession,
        chat_settings: Optional[ChatSettings] = None,
        config: Optional[FoundryClientOptions] = None,
        cfg=settings,
    ):
        self._session = session
        self._chat_settings = chat_settings or ChatSettings()
        self._config = config or FoundryClientOptions()
        self._settings = cfg
        self._client: Optional[AgentsClient] = None
        # 保护传输层客户端的一次性构造与 "auto" thread 的一次性创建
        self._lock = threading.Lock()

    @property
    def session(self) -> ChatSession:
        return self._session

    @property
    def model_id(self) -> str:
        thread_id = self._session.thread_id or AUTO_THREAD
        return f"{self._session.agent_id}:{thread_id}"

    @property
    def provider(self) -> str:
        return self._config.provider

    def supports_url(self, url: str) -> bool:
        return urlparse(str(url)).scheme == "https"

    # ---- 对外调用 ----

    def generate(
        self,
        prompt: Sequence[PromptMessage],
        cancel_event: Optional[threading.Event] = None,
        poll_interval_ms: Optional[int] = None,
        tools: Optional[Sequence[Any]] = None,
        provider_options: Optional[Dict[str, Any]] = None,
    ) -> GenerateResult:
        """执行一次非流式调用，阻塞直到 run 终态。

        Returns:
            GenerateResult，finish_reason 恒为 "stop"。

        Raises:
            AbortError: 调用被取消。
            RunFailedError: run 以非 completed 终态结束。
            以及传输层抛出的 NetworkError / ApiError / RateLimitError 等。
        """

        log_ctx = self._new_log_ctx()
        warnings = self._collect_warnings(tools)
        try:
            turn = self._start_turn(prompt, cancel_event, poll_interval_ms, provider_options, log_ctx)
            for _ in self._run_turn(turn, prompt, cancel_event, log_ctx):
                pass
            usage = collect_usage(turn.run)
        except AbortError:
            log_with_context(logging.INFO, "Generation aborted", log_ctx)
            raise
        except Exception as e:
            log_with_context(logging.ERROR, "Generation failed", log_ctx, error=str(e), error_type=type(e).__name__)
            raise

        log_with_context(
            logging.INFO,
            "Token usage",
            log_ctx,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )
        return GenerateResult(
            text=turn.reconciler.text,
            finish_reason="stop",
            usage=usage,
            raw_settings={"agent_id": self._session.agent_id, "thread_id": turn.thread_id},
            raw={
                "run": turn.run.raw,
                "messages": [asdict(m) for m in turn.messages],
            },
            warnings=warnings,
        )

    def stream(
        self,
        prompt: Sequence[PromptMessage],
        cancel_event: Optional[threading.Event] = None,
        poll_interval_ms: Optional[int] = None,
        tools: Optional[Sequence[Any]] = None,
        provider_options: Optional[Dict[str, Any]] = None,
    ) -> Iterator[StreamEvent]:
        """执行一次流式调用。

        先立即产出 metadata 事件；之后的任何失败（包括 thread/消息/run 创建失败与取消）
        都转换为最后一个 error 事件，而不是直接抛出。
        """

        log_ctx = self._new_log_ctx()
        warnings = self._collect_warnings(tools)
        yield StreamEvent(
            kind="metadata",
            id=self._config.generate_id(),
            timestamp=datetime.now(timezone.utc),
            model_id=self.model_id,
            warnings=warnings,
        )
        for warning in warnings:
            log_with_context(logging.INFO, "Ignoring unsupported setting", log_ctx, setting=warning.setting)
        try:
            turn = self._start_turn(prompt, cancel_event, poll_interval_ms, provider_options, log_ctx)
            for fragment in self._run_turn(turn, prompt, cancel_event, log_ctx):
                yield StreamEvent(kind="text-delta", text_delta=fragment)
            usage = collect_usage(turn.run)
        except AbortError as e:
            log_with_context(logging.INFO, "Stream aborted", log_ctx)
            yield StreamEvent(kind="error", error=e)
            return
        except Exception as e:
            log_with_context(logging.ERROR, "Stream failed", log_ctx, error=str(e), error_type=type(e).__name__)
            yield StreamEvent(kind="error", error=e)
            return

        log_with_context(
            logging.INFO,
            "Token usage",
            log_ctx,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )
        yield StreamEvent(kind="finish", finish_reason="stop", usage=usage)

    # ---- 内部流程 ----

    def _get_client(self) -> AgentsClient:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = self._config.client or FoundryClient(
                        self._config.base_url,
                        credential=self._config.credential,
                        cfg=self._settings,
                    )
        return self._client

    def _start_turn(
        self,
        prompt: Sequence[PromptMessage],
        cancel_event: Optional[threading.Event],
        poll_interval_ms: Optional[int],
        provider_options: Optional[Dict[str, Any]],
        log_ctx: Dict[str, Any],
    ) -> _Turn:
        self._latest_turn(prompt)
        raise_if_cancelled(cancel_event, log_ctx)
        client = self._get_client()
        with self._lock:
            thread_id = SessionStore(client).resolve_thread(self._session, log_ctx)
        log_ctx["thread_id"] = thread_id
        orchestrator = RunOrchestrator(
            client,
            poll_interval_ms=self._resolve_poll_interval(poll_interval_ms, provider_options),
            messages_page_limit=getattr(self._settings, "messages_page_limit", 100),
            log_ctx=log_ctx,
        )
        return _Turn(
            thread_id=thread_id,
            reconciler=ContentReconciler(log_ctx=log_ctx),
            orchestrator=orchestrator,
            log_ctx=log_ctx,
        )

    def _run_turn(
        self,
        turn: _Turn,
        prompt: Sequence[PromptMessage],
        cancel_event: Optional[threading.Event],
        log_ctx: Dict[str, Any],
    ) -> Iterator[str]:
        """驱动一次 run 直到终态，逐个 yield 新增文本片段；终态 run 写入 turn.run。"""

        latest = self._latest_turn(prompt)
        mode = self._resolve_mode()
        log_ctx["mode"] = mode
        log_with_context(logging.INFO, "Calling agent", log_ctx, prompt_messages=len(prompt))

        if mode == "events":
            yield from self._run_with_events(turn, latest, cancel_event)
        else:
            run = turn.orchestrator.submit_and_run(turn.thread_id, self._session.agent_id, latest, cancel_event)
            yield from self._follow_by_polling(turn, run, cancel_event)

        if not turn.run.succeeded:
            raise RunFailedError(
                turn.run.status,
                turn.run.last_error,
                thread_id=turn.thread_id,
                run_id=turn.run.id,
            )

    def _follow_by_polling(
        self,
        turn: _Turn,
        run: Run,
        cancel_event: Optional[threading.Event],
    ) -> Iterator[str]:
        turn.run_id = run.id
        turn.reconciler.bind_run(run.id)
        current = run
        for current in turn.orchestrator.poll(run, cancel_event):
            if current.is_terminal:
                break
            yield from self._reconcile_snapshot(turn)
        if current.succeeded:
            # 终态后再读一次，保证最后一次增长也被发出
            raise_if_cancelled(cancel_event, turn.log_ctx)
            yield from self._reconcile_snapshot(turn)
        turn.run = current

    def _reconcile_snapshot(self, turn: _Turn) -> Iterator[str]:
        messages = turn.orchestrator.fetch_messages(turn.thread_id)
        turn.messages = [
            m for m in messages
            if m.role == "assistant" and (m.run_id is None or m.run_id == turn.run_id)
        ]
        yield from turn.reconciler.observe_snapshot(messages)

    def _run_with_events(
        self,
        turn: _Turn,
        latest: ChatMessage,
        cancel_event: Optional[threading.Event],
    ) -> Iterator[str]:
        last_run: Optional[Run] = None
        for event in turn.orchestrator.subscribe(turn.thread_id, self._session.agent_id, latest, cancel_event):
            data = event.data
            if isinstance(data, Run):
                last_run = data
                turn.run_id = data.id
                turn.reconciler.bind_run(data.id)
            elif isinstance(data, MessageDelta):
                yield from turn.reconciler.observe_delta(data.message_id, data.text)
            elif isinstance(data, ThreadMessage) and event.event in (
                "thread.message.completed",
                "thread.message.incomplete",
            ):
                turn.messages.append(data)
                # 补齐 delta 中可能遗漏的尾部
                yield from turn.reconciler.observe_snapshot([data])
            elif event.event == "error":
                raise ApiError(code="STREAM_ERROR", message=self._describe_stream_error(data), http_status=502)

        if last_run is not None and last_run.is_terminal:
            turn.run = last_run
            return
        if last_run is None:
            raise ApiError(code="STREAM_ERROR", message="Run stream ended before a run was created", http_status=502)

        # 事件流在终态前断开，改用轮询跟完剩余部分（共用同一个 reconciler，不会重复发出）
        log_with_context(logging.WARNING, "Run stream ended early, falling back to polling", turn.log_ctx)
        raise_if_cancelled(cancel_event, turn.log_ctx)
        current = turn.orchestrator.get_run(turn.thread_id, last_run.id)
        yield from self._follow_by_polling(turn, current, cancel_event)

    # ---- 辅助方法 ----

    @staticmethod
    def _latest_turn(prompt: Sequence[PromptMessage]) -> ChatMessage:
        """只有最后一条消息会发送给 Agent Service，之前的历史已在 thread 中。"""

        if not prompt:
            raise ValidationError(code="EMPTY_PROMPT", message="Prompt must contain at least one message")
        last = prompt[-1]
        if isinstance(last, ChatMessage):
            return last
        if isinstance(last, Mapping):
            return ChatMessage(role=last.get("role") or "user", content=last.get("content", ""))
        raise ValidationError(code="INVALID_PROMPT", message=f"Unsupported prompt message: {type(last).__name__}")

    def _resolve_poll_interval(
        self,
        poll_interval_ms: Optional[int],
        provider_options: Optional[Dict[str, Any]],
    ) -> int:
        if poll_interval_ms is not None:
            return poll_interval_ms
        foundry_options = (provider_options or {}).get("foundry") or {}
        if foundry_options.get("poll_interval_ms") is not None:
            return int(foundry_options["poll_interval_ms"])
        if self._chat_settings.poll_interval_ms is not None:
            return self._chat_settings.poll_interval_ms
        return getattr(self._settings, "poll_interval_ms", 1000)

    def _resolve_mode(self) -> str:
        mode = self._chat_settings.run_mode or getattr(self._settings, "run_mode", "auto")
        streaming = bool(getattr(self._get_client(), "supports_streaming", False))
        if mode == "polling":
            return "polling"
        if not streaming:
            if mode == "events":
                logger.warning("Event streaming not supported by transport; falling back to polling")
            return "polling"
        return "events"

    @staticmethod
    def _collect_warnings(tools: Optional[Sequence[Any]]) -> List[CallWarning]:
        warnings: List[CallWarning] = []
        if tools:
            warnings.append(
                CallWarning(
                    type="unsupported-setting",
                    setting="tools",
                    details="Tools are configured on the Foundry agent and are not forwarded",
                )
            )
        return warnings

    @staticmethod
    def _describe_stream_error(data: Any) -> str:
        if isinstance(data, dict):
            err = data.get("error") if isinstance(data.get("error"), dict) else data
            code = err.get("code") or "unknown"
            return f"[{code}] {err.get('message') or 'Run stream reported an error'}"
        return str(data) if data else "Run stream reported an error"

    def _new_log_ctx(self) -> Dict[str, Any]:
        return {
            "trace_id": f"tr-{uuid4().hex}",
            "provider": self.provider,
            "agent_id": self._session.agent_id,
        }
