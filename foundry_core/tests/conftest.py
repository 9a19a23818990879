from typing import List, Optional

import pytest

from foundry_core.domain.models import ContentSegment, Run, RunStreamEvent, ThreadMessage


def assistant_message(text: Optional[str], message_id: str = "msg-1", run_id: str = "run-1") -> ThreadMessage:
    content = [] if text is None else [ContentSegment(type="text", text=text)]
    return ThreadMessage(id=message_id, role="assistant", content=content, run_id=run_id)


class FakeAgentsClient:
    """内存中的 Agent Service：按脚本返回 run 状态与消息快照。

    - statuses: 第 N 次 get_run 返回的状态（create_run 返回第 0 个）。
    - snapshots: 第 N 次 list_messages 返回的助手文本（超出后保持最后一个）。
    - events: stream_run 产出的事件；为 None 时不支持事件流。
    """

    def __init__(
        self,
        statuses=("queued", "in_progress", "completed"),
        snapshots=(),
        usage=None,
        events=None,
        last_error=None,
    ):
        self.statuses = list(statuses)
        self.snapshots = list(snapshots)
        self.usage = usage
        self.events = events
        self.last_error = last_error
        self.supports_streaming = events is not None
        self.calls: List[tuple] = []
        self.thread_counter = 0
        self.get_run_count = 0
        self.list_count = 0
        self.on_get_run = None

    def _run(self, index: int) -> Run:
        status = self.statuses[min(index, len(self.statuses) - 1)]
        terminal = status not in ("queued", "in_progress")
        return Run(
            id="run-1",
            thread_id="thread-1",
            status=status,
            usage=self.usage if terminal else {"prompt_tokens": 999, "completion_tokens": 999},
            last_error=self.last_error if terminal else None,
            raw={"id": "run-1", "status": status},
        )

    def create_thread(self) -> str:
        self.thread_counter += 1
        self.calls.append(("create_thread",))
        return f"thread-{self.thread_counter}"

    def create_message(self, thread_id: str, role: str, content: str) -> str:
        self.calls.append(("create_message", thread_id, role, content))
        return "user-msg-1"

    def create_run(self, thread_id: str, agent_id: str) -> Run:
        self.calls.append(("create_run", thread_id, agent_id))
        return self._run(0)

    def get_run(self, thread_id: str, run_id: str) -> Run:
        self.get_run_count += 1
        self.calls.append(("get_run", thread_id, run_id))
        run = self._run(self.get_run_count)
        if self.on_get_run is not None:
            self.on_get_run(self.get_run_count)
        return run

    def list_messages(self, thread_id: str, order: str = "asc", limit: int = 100) -> List[ThreadMessage]:
        self.calls.append(("list_messages", thread_id, order, limit))
        if not self.snapshots:
            return []
        snapshot = self.snapshots[min(self.list_count, len(self.snapshots) - 1)]
        self.list_count += 1
        messages = [
            ThreadMessage(id="user-msg-1", role="user", content=[ContentSegment(type="text", text="Hi")], run_id=None),
            assistant_message(snapshot),
        ]
        return list(reversed(messages)) if order == "desc" else messages

    def stream_run(self, thread_id: str, agent_id: str):
        self.calls.append(("stream_run", thread_id, agent_id))
        for event in self.events or []:
            if isinstance(event, Exception):
                raise event
            yield event

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def fake_client_factory():
    return FakeAgentsClient


def run_event(status: str, usage=None, last_error=None) -> RunStreamEvent:
    name = {"queued": "thread.run.created"}.get(status, f"thread.run.{status}")
    return RunStreamEvent(
        event=name,
        data=Run(id="run-1", thread_id="thread-1", status=status, usage=usage, last_error=last_error),
    )


@pytest.fixture
def make_run_event():
    return run_event
