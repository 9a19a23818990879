"""统一的会话、Run 与流式事件数据模型。

本模块定义了适配层内部共享的标准数据结构：

- ChatSession: 调用方持有的会话（agent + thread），跨多轮复用。
- ChatMessage: 调用方传入的一条历史消息。
- Run / ThreadMessage: Agent Service 侧 run 与消息的统一表示。
- StreamEvent / GenerateResult: 对外暴露的两种调用结果形态。

传输层（如 FoundryClient）只负责在 API JSON 与这些模型之间做转换，
上层 runtime 与 agents 只依赖这些模型。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional


# 尚未创建 thread 的占位值
AUTO_THREAD = "auto"

# 调用方消息角色（与 AI SDK / OpenAI 的 role 字段对应）
Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class ChatSession:
    """一个逻辑会话：运行哪个 agent、续写哪个 thread。

    - agent_id: Foundry 中的 agent ID。
    - thread_id: 外部 thread ID；"auto" 表示尚未创建，首次调用时创建并回写。

    同一个 ChatSession 对象在多轮之间复用，即为会话连续性的单位。
    """

    agent_id: str
    thread_id: str = AUTO_THREAD

    @property
    def has_thread(self) -> bool:
        return bool(self.thread_id) and self.thread_id != AUTO_THREAD


@dataclass
class ChatMessage:
    """调用方传入的一条消息。

    content 可能是纯文本，也可能是结构化内容（多段 parts），
    发送给 Agent Service 前会被序列化为单个字符串。
    """

    role: Role
    content: Any
    meta: Dict[str, Any] = field(default_factory=dict)


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    FAILED = "failed"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    EXPIRED = "expired"


# 只有这两个状态会继续轮询/订阅，其余一律视为终态
NON_TERMINAL_STATUSES = frozenset({RunStatus.QUEUED.value, RunStatus.IN_PROGRESS.value})


@dataclass
class Run:
    """Agent 在某个 thread 上的一次执行。

    status 保留服务端原始字符串，未知状态同样按终态处理。
    usage 只有在终态时才可信，读取请走 runtime.usage.collect_usage。
    """

    id: str
    thread_id: str
    status: str
    usage: Optional[Dict[str, Any]] = None
    last_error: Optional[Dict[str, Any]] = None
    raw: Optional[dict] = None

    @property
    def is_terminal(self) -> bool:
        return self.status not in NON_TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED.value


@dataclass
class ContentSegment:
    """消息中的一段内容；只有 type == "text" 且 text 非空的段参与拼接。"""

    type: str
    text: Optional[str] = None


@dataclass
class ThreadMessage:
    """thread 上的一条消息（轮询模式下其文本可能在两次轮询之间增长）。"""

    id: str
    role: str
    content: List[ContentSegment] = field(default_factory=list)
    run_id: Optional[str] = None

    @property
    def text_segments(self) -> List[str]:
        return [
            seg.text
            for seg in self.content
            if seg.type == "text" and isinstance(seg.text, str)
        ]

    @property
    def text(self) -> str:
        return "".join(self.text_segments)


@dataclass
class MessageDelta:
    """事件流中的 thread.message.delta 增量。"""

    message_id: str
    content: List[ContentSegment] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(
            seg.text for seg in self.content if seg.type == "text" and isinstance(seg.text, str)
        )


@dataclass
class RunStreamEvent:
    """Agent Service 推送的一条生命周期事件。

    event 为服务端事件名（如 "thread.message.delta"、"thread.run.completed"），
    data 已被传输层解析为 Run / ThreadMessage / MessageDelta，其余事件保留 dict。
    """

    event: str
    data: Any = None


@dataclass
class ChatUsage:
    """终态 run 的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class CallWarning:
    """调用参数中被忽略的设置，例如 agent 在服务端已配置工具时传入的 tools。"""

    type: Literal["unsupported-setting", "other"]
    setting: Optional[str] = None
    details: Optional[str] = None


FinishReason = Literal["stop", "length", "content-filter", "tool-calls"]


@dataclass
class GenerateResult:
    """一次 generate 调用的最终结果。

    - text: 本次 run 中助手输出的完整文本。
    - finish_reason: 正常完成时为 "stop"。
    - usage: 终态 run 的 token 统计。
    - raw_settings: 实际使用的 agent_id / thread_id，便于调试。
    - raw: 终态 run 与本次 run 产生的消息原始数据。
    """

    text: str
    finish_reason: FinishReason
    usage: ChatUsage
    raw_settings: Dict[str, Any] = field(default_factory=dict)
    raw: Optional[dict] = None
    warnings: List[CallWarning] = field(default_factory=list)


StreamEventKind = Literal["metadata", "text-delta", "finish", "error"]


@dataclass
class StreamEvent:
    """stream 调用产出的事件。

    kind:
        - "metadata": 流的第一个事件，携带 id / timestamp / model_id 与调用 warnings。
        - "text-delta": 新观测到的一段助手文本。
        - "finish": 正常结束，携带 usage 与 finish_reason。
        - "error": 失败或取消，携带异常对象。

    finish 与 error 互斥，且总是最后一个事件。
    """

    kind: StreamEventKind
    id: Optional[str] = None
    timestamp: Optional[datetime] = None
    model_id: Optional[str] = None
    text_delta: Optional[str] = None
    finish_reason: Optional[FinishReason] = None
    usage: Optional[ChatUsage] = None
    error: Optional[BaseException] = None
    warnings: List[CallWarning] = field(default_factory=list)
