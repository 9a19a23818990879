"""适配层运行时：thread 复用、run 编排、增量文本推导与用量统计。"""

from foundry_core.runtime.orchestrator import RunOrchestrator, raise_if_cancelled, serialize_content
from foundry_core.runtime.reconciler import ContentReconciler
from foundry_core.runtime.session_store import SessionStore
from foundry_core.runtime.usage import collect_usage

__all__ = [
    "ContentReconciler",
    "RunOrchestrator",
    "SessionStore",
    "collect_usage",
    "raise_if_cancelled",
    "serialize_content",
]
