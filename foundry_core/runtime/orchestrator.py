"""Run 生命周期编排。

负责把最新一轮用户消息写入 thread、启动 run，并跟踪 run 直到终态：

- 轮询模式：按固定间隔重新获取 run 状态（poll）。
- 事件模式：以事件流方式启动 run，逐条转发生命周期事件（subscribe）。

两种模式都在每次继续之前检查取消信号；一旦触发，不再发起任何请求并抛出 AbortError。
"""

import json
import logging
import threading
import time
from typing import Any, Dict, Iterator, List, Optional

from foundry_core.domain.exceptions import AbortError
from foundry_core.domain.models import ChatMessage, Run, RunStreamEvent, ThreadMessage
from foundry_core.infrastructure.logging.logger import log_with_context
from foundry_core.providers.base import AgentsClient


DEFAULT_POLL_INTERVAL_MS = 1000


def serialize_content(content: Any) -> str:
    """把消息内容序列化为单个字符串：字符串原样，结构化内容转 JSON。"""

    if isinstance(content, str):
        return content
    if isinstance(content, (dict, list, tuple)):
        return json.dumps(content, ensure_ascii=False)
    if content is None:
        return ""
    return str(content)


def raise_if_cancelled(cancel_event: Optional[threading.Event], log_ctx: Optional[Dict[str, Any]] = None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        log_with_context(logging.INFO, "Request aborted", log_ctx or {})
        raise AbortError()


class RunOrchestrator:
    """一次调用内的 run 编排器（每次调用新建，不跨调用共享状态）。"""

    def __init__(
        self,
        client: AgentsClient,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        messages_page_limit: int = 100,
        log_ctx: Optional[Dict[str, Any]] = None,
    ):
        self._client = client
        self._poll_interval = max(poll_interval_ms, 0) / 1000.0
        self._messages_page_limit = messages_page_limit
        self._log_ctx = log_ctx if log_ctx is not None else {}

    def submit(self, thread_id: str, latest_turn: ChatMessage) -> str:
        message_id = self._client.create_message(
            thread_id,
            latest_turn.role,
            serialize_content(latest_turn.content),
        )
        log_with_context(
            logging.INFO,
            "Submitted message",
            self._log_ctx,
            thread_id=thread_id,
            message_id=message_id,
            role=latest_turn.role,
        )
        return message_id

    def submit_and_run(
        self,
        thread_id: str,
        agent_id: str,
        latest_turn: ChatMessage,
        cancel_event: Optional[threading.Event] = None,
    ) -> Run:
        """写入最新一轮消息并启动 run，返回初始 run 状态。

        写消息与启动 run 之前都检查取消信号，已取消的调用不会在服务端产生 run。
        """

        raise_if_cancelled(cancel_event, self._log_ctx)
        self.submit(thread_id, latest_turn)
        raise_if_cancelled(cancel_event, self._log_ctx)
        run = self._client.create_run(thread_id, agent_id)
        self._log_ctx["run_id"] = run.id
        log_with_context(logging.INFO, "Created run", self._log_ctx, status=run.status)
        return run

    def poll(self, run: Run, cancel_event: Optional[threading.Event] = None) -> Iterator[Run]:
        """按间隔轮询 run，依次 yield 每次观测到的状态，最后一个为终态。

        每次 yield 非终态 run 之前、以及每次睡眠之后都会检查取消信号，
        调用方可以在两次 yield 之间读取消息快照。
        """

        current = run
        while not current.is_terminal:
            raise_if_cancelled(cancel_event, self._log_ctx)
            yield current
            self._sleep(cancel_event)
            raise_if_cancelled(cancel_event, self._log_ctx)
            current = self._client.get_run(current.thread_id, current.id)
        self._log_terminal(current)
        yield current

    def get_run(self, thread_id: str, run_id: str) -> Run:
        return self._client.get_run(thread_id, run_id)

    def fetch_messages(self, thread_id: str) -> List[ThreadMessage]:
        """获取 thread 上最新一页消息，按旧 → 新排序返回。"""

        messages = self._client.list_messages(thread_id, order="desc", limit=self._messages_page_limit)
        return list(reversed(messages))

    def subscribe(
        self,
        thread_id: str,
        agent_id: str,
        latest_turn: ChatMessage,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[RunStreamEvent]:
        """写入消息后以事件流方式启动 run，转发事件直到 run 终态、error 或 done。"""

        raise_if_cancelled(cancel_event, self._log_ctx)
        self.submit(thread_id, latest_turn)
        raise_if_cancelled(cancel_event, self._log_ctx)
        events = self._client.stream_run(thread_id, agent_id)
        try:
            for event in events:
                raise_if_cancelled(cancel_event, self._log_ctx)
                if isinstance(event.data, Run) and "run_id" not in self._log_ctx:
                    self._log_ctx["run_id"] = event.data.id
                yield event
                if event.event in ("error", "done"):
                    return
                if event.event.startswith("thread.run.") and isinstance(event.data, Run) and event.data.is_terminal:
                    self._log_terminal(event.data)
                    return
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()

    def _sleep(self, cancel_event: Optional[threading.Event]) -> None:
        if self._poll_interval <= 0:
            return
        if cancel_event is not None:
            # 取消时提前醒来
            cancel_event.wait(self._poll_interval)
        else:
            time.sleep(self._poll_interval)

    def _log_terminal(self, run: Run) -> None:
        level = logging.INFO if run.succeeded else logging.WARNING
        log_with_context(level, "Run reached terminal status", self._log_ctx, run_id=run.id, status=run.status)
