"""会话 → thread 映射。

一个 ChatSession 首次使用时才创建 thread，创建结果写回 session.thread_id，
之后同一 session 对象上的每次调用都复用该 thread。
"""

import logging
from typing import Any, Dict, Optional

from foundry_core.domain.models import ChatSession
from foundry_core.infrastructure.logging.logger import log_with_context
from foundry_core.providers.base import AgentsClient


class SessionStore:
    def __init__(self, client: AgentsClient):
        self._client = client

    def resolve_thread(self, session: ChatSession, log_ctx: Optional[Dict[str, Any]] = None) -> str:
        """返回 session 对应的 thread ID，必要时创建。

        已有具体 thread_id 时原样返回，不发起任何网络请求；
        为 "auto" 时创建 thread 并回写到 session 上，创建失败的异常原样抛出。
        """

        if session.has_thread:
            return session.thread_id

        thread_id = self._client.create_thread()
        session.thread_id = thread_id
        log_with_context(
            logging.INFO,
            "Created new thread",
            log_ctx or {},
            agent_id=session.agent_id,
            thread_id=thread_id,
        )
        return thread_id
