"""Foundry Core 顶层包。

该包把 Azure AI Foundry Agent Service 的 thread / run 作业模型
适配为通用的文本生成接口（一次性 generate 与流式 stream），
包括配置加载、领域模型、REST 传输、run 编排与增量文本推导等能力。
"""

from foundry_core.domain.models import ChatMessage, ChatSession, GenerateResult, StreamEvent
from foundry_core.providers import create_foundry_provider, foundry_provider

__all__ = [
    "ChatMessage",
    "ChatSession",
    "GenerateResult",
    "StreamEvent",
    "create_foundry_provider",
    "foundry_provider",
]
