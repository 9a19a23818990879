"""Azure AI Foundry Agent Service 传输层。

本模块负责：

1. 规范化项目 endpoint，并通过 azure-ai-projects 的 AIProjectClient 访问 agents 子客户端。
2. 调用 SDK 的 threads / messages / runs 操作；认证与事件流解析都交给 SDK。
3. 把 azure-core 异常统一映射为 domain.exceptions 中的异常。
4. 把 SDK 返回的模型对象转换为 Run / ThreadMessage / RunStreamEvent。

适配层本身（runtime / agents）只通过 AgentsClient 协议调用这里。
"""

from itertools import islice
from typing import Any, Dict, Iterator, List, Mapping, Optional

from azure.ai.agents.models import ListSortOrder
from azure.ai.projects import AIProjectClient
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)

from foundry_core.config.settings import settings
from foundry_core.domain.exceptions import ApiError, BusinessError, NetworkError, RateLimitError, ValidationError
from foundry_core.domain.models import ContentSegment, MessageDelta, Run, RunStreamEvent, ThreadMessage


def resolve_project_endpoint(connection: str) -> str:
    """把连接配置规范化为项目级 endpoint。

    接受 ``https://<res>.services.ai.azure.com/api/projects/<name>``；
    cognitiveservices 域名不提供 agents 路由，统一改写到 services.ai.azure.com。

    Raises:
        ValidationError: 为空、旧式 hub 连接串或格式无法识别。
    """

    conn = (connection or "").strip().rstrip("/")
    if not conn:
        raise ValidationError(
            code="MISSING_CONNECTION_STRING",
            message="AZURE_AI_PROJECTS_CONNECTION_STRING or PROJECT_ENDPOINT not set",
        )
    if ";" in conn:
        raise ValidationError(
            code="INVALID_CONNECTION_STRING",
            message="Hub connection strings (host;subscription;resource_group;project) are not supported, "
            "use the project endpoint https://<resource>.services.ai.azure.com/api/projects/<project>",
        )
    if not conn.startswith("https://"):
        raise ValidationError(code="INVALID_ENDPOINT", message=f"Endpoint must use https: {conn!r}")
    if "/api/projects/" not in conn:
        raise ValidationError(
            code="INVALID_ENDPOINT",
            message="Project endpoint must include /api/projects/<project-name>",
        )
    return conn.replace("cognitiveservices.azure.com", "services.ai.azure.com")


def map_azure_error(exc: AzureError) -> BusinessError:
    """azure-core 异常 → 业务异常。"""

    if isinstance(exc, ClientAuthenticationError):
        status = getattr(exc, "status_code", None) or 401
        return ApiError(code="AUTH_ERROR", message=str(exc.message or exc), http_status=status)
    if isinstance(exc, HttpResponseError):
        status = getattr(exc, "status_code", None)
        if status == 429:
            return RateLimitError(code="RATE_LIMIT", message="Agent Service rate limit", http_status=429)
        return ApiError(code="API_ERROR", message=str(exc.message or exc), http_status=status or 502)
    if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        # 网络错误：DNS 失败、连接被拒、读超时等
        return NetworkError(code="NETWORK_ERROR", message=str(exc.message or exc), http_status=503)
    return ApiError(code="API_ERROR", message=str(exc.message or exc), http_status=502)


class FoundryClient:
    """基于 Azure AI Projects SDK 的 AgentsClient 实现。

    - name: Provider 名称（供日志/调试使用）。
    - supports_streaming: SDK 的 runs.stream 支持以事件流方式启动 run。
    """

    name = "azure.ai-foundry"
    supports_streaming = True

    def __init__(self, connection: str, credential=None, cfg=settings):
        self._settings = cfg
        self._endpoint = resolve_project_endpoint(connection)
        self._credential = credential
        self._project: Optional[AIProjectClient] = None

    @property
    def endpoint(self) -> str:
        return self._endpoint

    # ---- thread / message / run ----

    def create_thread(self) -> str:
        try:
            return self._agents().threads.create().id
        except AzureError as e:
            raise map_azure_error(e)

    def create_message(self, thread_id: str, role: str, content: str) -> str:
        try:
            message = self._agents().messages.create(thread_id=thread_id, role=role, content=content)
        except AzureError as e:
            raise map_azure_error(e)
        return message.id

    def create_run(self, thread_id: str, agent_id: str) -> Run:
        try:
            run = self._agents().runs.create(thread_id=thread_id, agent_id=agent_id)
        except AzureError as e:
            raise map_azure_error(e)
        return self._to_run(run, thread_id)

    def get_run(self, thread_id: str, run_id: str) -> Run:
        try:
            run = self._agents().runs.get(thread_id=thread_id, run_id=run_id)
        except AzureError as e:
            raise map_azure_error(e)
        return self._to_run(run, thread_id)

    def list_messages(self, thread_id: str, order: str = "asc", limit: int = 100) -> List[ThreadMessage]:
        sort = ListSortOrder.DESCENDING if order == "desc" else ListSortOrder.ASCENDING
        try:
            pages = self._agents().messages.list(thread_id=thread_id, order=sort, limit=limit)
            # limit 只是页大小，分页迭代器会继续翻页；这里只要第一页
            return [self._to_message(m) for m in islice(pages, limit)]
        except AzureError as e:
            raise map_azure_error(e)

    def stream_run(self, thread_id: str, agent_id: str) -> Iterator[RunStreamEvent]:
        """通过 runs.stream 启动 run，逐条 yield 生命周期事件。

        生成器被提前关闭（例如调用方取消）时，退出 with 块，SDK 随之关闭底层响应。
        """

        try:
            with self._agents().runs.stream(thread_id=thread_id, agent_id=agent_id) as stream:
                for event_type, event_data, _ in stream:
                    yield self._to_stream_event(_enum_value(event_type), event_data, thread_id)
        except AzureError as e:
            raise map_azure_error(e)

    def close(self) -> None:
        if self._project is not None:
            self._project.close()
            self._project = None

    # ---- SDK 客户端 ----

    def _get_credential(self):
        if self._credential is None:
            from azure.identity import DefaultAzureCredential

            self._credential = DefaultAzureCredential()
        return self._credential

    def _agents(self):
        if self._project is None:
            timeout = getattr(self._settings, "http_timeout", None)
            kwargs: Dict[str, Any] = {}
            if timeout:
                kwargs = {"connection_timeout": timeout, "read_timeout": timeout}
            self._project = AIProjectClient(endpoint=self._endpoint, credential=self._get_credential(), **kwargs)
        return self._project.agents

    # ---- 转换 ----

    def _to_stream_event(self, event: str, data: Any, thread_id: str) -> RunStreamEvent:
        if event == "done":
            return RunStreamEvent(event="done")
        if event == "error":
            return RunStreamEvent(event="error", data=_as_dict(data) if not isinstance(data, str) else data)
        if event.startswith("thread.run.step."):
            return RunStreamEvent(event=event, data=_as_dict(data))
        if event.startswith("thread.run."):
            return RunStreamEvent(event=event, data=self._to_run(data, thread_id))
        if event == "thread.message.delta":
            return RunStreamEvent(event=event, data=self._to_delta(data))
        if event.startswith("thread.message."):
            return RunStreamEvent(event=event, data=self._to_message(data))
        return RunStreamEvent(event=event, data=data)

    @staticmethod
    def _to_run(run: Any, thread_id: str) -> Run:
        return Run(
            id=getattr(run, "id", None) or "",
            thread_id=getattr(run, "thread_id", None) or thread_id,
            status=_enum_value(getattr(run, "status", None)) or "",
            usage=_as_dict(getattr(run, "usage", None)),
            last_error=_as_dict(getattr(run, "last_error", None)),
            raw=_as_dict(run),
        )

    @staticmethod
    def _to_segments(items: Any) -> List[ContentSegment]:
        """text 段缺少可用 value 时 text 为 None，由上层跳过。"""

        segments: List[ContentSegment] = []
        for item in items or []:
            seg_type = _enum_value(getattr(item, "type", None)) or "unknown"
            text = None
            if seg_type == "text":
                value = getattr(getattr(item, "text", None), "value", None)
                if isinstance(value, str):
                    text = value
            segments.append(ContentSegment(type=seg_type, text=text))
        return segments

    def _to_message(self, message: Any) -> ThreadMessage:
        return ThreadMessage(
            id=getattr(message, "id", None) or "",
            role=_enum_value(getattr(message, "role", None)) or "",
            content=self._to_segments(getattr(message, "content", None)),
            run_id=getattr(message, "run_id", None),
        )

    def _to_delta(self, chunk: Any) -> MessageDelta:
        delta = getattr(chunk, "delta", None)
        return MessageDelta(
            message_id=getattr(chunk, "id", None) or "",
            content=self._to_segments(getattr(delta, "content", None)),
        )


def _enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


def _as_dict(obj: Any) -> Optional[Dict[str, Any]]:
    """SDK 模型 → 普通 dict（SDK 模型自带 as_dict，测试替身用普通对象或 dict）。"""

    if obj is None:
        return None
    as_dict = getattr(obj, "as_dict", None)
    if callable(as_dict):
        return as_dict()
    if isinstance(obj, Mapping):
        return dict(obj)
    return dict(vars(obj))
