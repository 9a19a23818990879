"""助手输出 → 增量文本片段。

Agent Service 只在两种形态下暴露助手输出：

- 轮询模式：每次拉到的是消息的完整快照，需要与上次观测的文本做差，
  得到“自上次以来新增的部分”。
- 事件模式：服务端直接推送 thread.message.delta，增量原样使用即可。

两种形态共用同一份状态，保证：把发出的所有片段按顺序拼接，
恰好等于终态时观测到的助手文本；同一段内容不会重复发出。
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from foundry_core.domain.models import ThreadMessage
from foundry_core.infrastructure.logging.logger import log_with_context


class ContentReconciler:
    """跟踪一次 run 内每条助手消息的最新文本，并产出新增片段。

    Args:
        run_id: 只关注该 run 产生的消息；为空时关注 thread 上所有助手消息。
        separator: 同一 run 内第二条及之后的助手消息，首个片段前插入的分隔符。
        log_ctx: 日志上下文（trace_id / thread_id 等）。
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        separator: str = "\n",
        log_ctx: Optional[Dict[str, Any]] = None,
    ):
        self._run_id = run_id
        self._separator = separator
        self._log_ctx = log_ctx or {}
        self._latest_content: Dict[str, str] = {}
        self._started: Set[str] = set()
        self._emitted: List[str] = []

    @property
    def processed_message_ids(self) -> Set[str]:
        return set(self._latest_content)

    @property
    def text(self) -> str:
        """目前为止发出的全部片段拼接结果。"""

        return "".join(self._emitted)

    def bind_run(self, run_id: str) -> None:
        self._run_id = run_id

    def observe_snapshot(self, messages: Iterable[ThreadMessage]) -> List[str]:
        """对一次轮询拿到的消息快照（旧 → 新）做差，返回新增片段。

        内容没有变化时返回空列表，重复轮询不会产生重复片段。
        """

        fragments: List[str] = []
        for message in messages:
            if not self._is_relevant(message):
                continue
            current = message.text
            previous = self._latest_content.setdefault(message.id, "")
            if current == previous:
                continue
            if current.startswith(previous):
                fragment = current[len(previous):]
            else:
                # 服务端约定消息只追加不改写；出现非前缀更新时整段重发并记录
                log_with_context(
                    logging.WARNING,
                    "Non-prefix update of assistant message",
                    self._log_ctx,
                    message_id=message.id,
                    previous_length=len(previous),
                    current_length=len(current),
                )
                fragment = current
            self._latest_content[message.id] = current
            if fragment:
                fragments.append(self._emit(message.id, fragment))
        return fragments

    def observe_delta(self, message_id: str, fragment: str) -> List[str]:
        """事件模式：delta 文本原样作为片段。"""

        if not fragment:
            return []
        self._latest_content[message_id] = self._latest_content.get(message_id, "") + fragment
        return [self._emit(message_id, fragment)]

    def _is_relevant(self, message: ThreadMessage) -> bool:
        if message.role != "assistant":
            return False
        if self._run_id and message.run_id and message.run_id != self._run_id:
            return False
        return True

    def _emit(self, message_id: str, fragment: str) -> str:
        if message_id not in self._started:
            self._started.add(message_id)
            if self._emitted:
                fragment = self._separator + fragment
        self._emitted.append(fragment)
        return fragment
