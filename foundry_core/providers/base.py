"""Agent Service 传输层抽象接口。

上层 runtime / agents 不直接依赖具体的 HTTP 调用，而是依赖此协议：

- FoundryClient 通过 REST 实现它（见 foundry_client）。
- 测试中可以用内存里的假实现替换，驱动整个轮询/订阅流程。

这样可以在不改适配层代码的前提下切换传输方式（REST、官方 SDK 等）。
"""

from typing import Iterator, List, Protocol

from foundry_core.domain.models import Run, RunStreamEvent, ThreadMessage


class AgentsClient(Protocol):
    """Agent Service 客户端协议。

    实现者需要提供：
    - supports_streaming: 是否支持以事件流方式启动 run。
    - thread / message / run 的基本操作，失败时抛出 domain.exceptions 中的异常。
    """

    supports_streaming: bool

    def create_thread(self) -> str:
        ...

    def create_message(self, thread_id: str, role: str, content: str) -> str:
        ...

    def create_run(self, thread_id: str, agent_id: str) -> Run:
        ...

    def get_run(self, thread_id: str, run_id: str) -> Run:
        ...

    def list_messages(self, thread_id: str, order: str = "asc", limit: int = 100) -> List[ThreadMessage]:
        ...

    def stream_run(self, thread_id: str, agent_id: str) -> Iterator[RunStreamEvent]:
        """启动 run 并逐条产出生命周期事件，流结束即返回。"""

        ...
