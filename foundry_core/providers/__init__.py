"""Agent Service 集成层。

该包下的模块负责：
- 定义传输层抽象接口 (base)。
- 提供基于 Azure AI Projects SDK 的实现 (foundry_client)。
- 提供模型工厂 create_foundry_provider，按 agent/thread 构造 FoundryChatModel。
"""

from typing import Any, Optional, Union

from foundry_core.config.settings import settings
from foundry_core.domain.exceptions import ValidationError
from foundry_core.domain.models import AUTO_THREAD, ChatSession
from foundry_core.providers.base import AgentsClient


ModelId = Union[ChatSession, str]


class FoundryProvider:
    """Foundry 模型工厂：provider(model_id) 与 provider.chat(model_id) 等价。"""

    def __init__(self, api_key: Optional[str] = None, credential: Any = None, cfg=None):
        self._api_key = api_key
        self._credential = credential
        self._cfg = cfg

    def __call__(self, model_id: ModelId, chat_settings=None):
        return self.chat(model_id, chat_settings)

    def chat(self, model_id: ModelId, chat_settings=None):
        from foundry_core.agents.foundry_agent import FoundryChatModel, FoundryClientOptions

        cfg = self._cfg or settings
        connection = self._load_connection_string(cfg)
        session = model_id if isinstance(model_id, ChatSession) else ChatSession(agent_id=model_id, thread_id=AUTO_THREAD)
        return FoundryChatModel(
            session,
            chat_settings,
            FoundryClientOptions(
                base_url=connection,
                credential=self._credential,
            ),
            cfg=cfg,
        )

    def _load_connection_string(self, cfg) -> str:
        """按 参数 > AZURE_AI_PROJECTS_CONNECTION_STRING > PROJECT_ENDPOINT 的顺序取连接串。"""

        connection = (
            self._api_key
            or getattr(cfg, "azure_ai_projects_connection_string", None)
            or getattr(cfg, "project_endpoint", None)
        )
        if not connection:
            raise ValidationError(
                code="MISSING_CONNECTION_STRING",
                message="Azure AI Projects connection string for the Foundry Agent Service is not set "
                "(AZURE_AI_PROJECTS_CONNECTION_STRING)",
            )
        return connection.rstrip("/")


def create_foundry_provider(
    api_key: Optional[str] = None,
    credential: Any = None,
    cfg=None,
) -> FoundryProvider:
    """创建 Foundry provider；连接串在构造模型时才读取，未配置时也可以安全导入。"""

    return FoundryProvider(api_key=api_key, credential=credential, cfg=cfg)


# 默认实例，直接 import 使用
foundry_provider = create_foundry_provider()


__all__ = ["AgentsClient", "FoundryProvider", "ModelId", "create_foundry_provider", "foundry_provider"]
