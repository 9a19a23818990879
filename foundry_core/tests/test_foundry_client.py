from types import SimpleNamespace as NS

import pytest
from azure.ai.agents.models import ListSortOrder
from azure.core.exceptions import ClientAuthenticationError, HttpResponseError, ServiceRequestError

from foundry_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from foundry_core.domain.models import MessageDelta, Run, ThreadMessage
from foundry_core.providers.foundry_client import FoundryClient, resolve_project_endpoint


PROJECT = "https://res.services.ai.azure.com/api/projects/p1"


class SettingsStub:
    http_timeout = 5.0


def _text(value):
    return NS(type="text", text=NS(value=value, annotations=[]))


class FakeStream:
    def __init__(self, events, captured):
        self._events = events
        self._captured = captured

    def __enter__(self):
        return self

    def __exit__(self, *a):
        self._captured["stream_closed"] = True
        return False

    def __iter__(self):
        for event_type, data in self._events:
            if isinstance(event_type, Exception):
                raise event_type
            yield event_type, data, None


def _install(monkeypatch, captured, run=None, messages=(), events=(), error=None):
    def maybe_fail(name):
        captured.setdefault("calls", []).append(name)
        if error is not None:
            raise error

    class Threads:
        def create(self):
            maybe_fail("threads.create")
            return NS(id="thread_1")

    class Messages:
        def create(self, thread_id, role, content):
            maybe_fail("messages.create")
            captured["message"] = (thread_id, role, content)
            return NS(id="msg_1")

        def list(self, thread_id, order=None, limit=None):
            maybe_fail("messages.list")
            captured["list"] = (thread_id, order, limit)
            return iter(messages)

    class Runs:
        def create(self, thread_id, agent_id):
            maybe_fail("runs.create")
            captured["run"] = (thread_id, agent_id)
            return run

        def get(self, thread_id, run_id):
            maybe_fail("runs.get")
            return run

        def stream(self, thread_id, agent_id):
            maybe_fail("runs.stream")
            captured["stream"] = (thread_id, agent_id)
            return FakeStream(events, captured)

    class ProjectClient:
        def __init__(self, endpoint, credential, **kwargs):
            captured["endpoint"] = endpoint
            captured["credential"] = credential
            captured["kwargs"] = kwargs
            self.agents = NS(threads=Threads(), messages=Messages(), runs=Runs())

        def close(self):
            captured["closed"] = True

    monkeypatch.setattr("foundry_core.providers.foundry_client.AIProjectClient", ProjectClient)


def _client(connection=PROJECT):
    return FoundryClient(connection, credential="cred", cfg=SettingsStub())


def test_project_client_is_built_lazily(monkeypatch):
    captured = {}
    _install(monkeypatch, captured)
    fc = _client("https://res.cognitiveservices.azure.com/api/projects/p1/")
    assert "endpoint" not in captured

    assert fc.create_thread() == "thread_1"
    assert fc.create_thread() == "thread_1"
    assert captured["endpoint"] == PROJECT
    assert captured["credential"] == "cred"
    assert captured["kwargs"] == {"connection_timeout": 5.0, "read_timeout": 5.0}

    fc.close()
    assert captured["closed"] is True


def test_message_and_run_calls(monkeypatch):
    captured = {}
    run = NS(
        id="run_1",
        thread_id="thread_1",
        status=NS(value="queued"),
        usage=None,
        last_error=None,
    )
    _install(monkeypatch, captured, run=run)
    fc = _client()

    assert fc.create_message("thread_1", "user", "Hi") == "msg_1"
    created = fc.create_run("thread_1", "A1")

    assert captured["message"] == ("thread_1", "user", "Hi")
    assert captured["run"] == ("thread_1", "A1")
    assert isinstance(created, Run)
    assert (created.id, created.status, created.is_terminal) == ("run_1", "queued", False)


def test_get_run_converts_usage_and_error(monkeypatch):
    run = NS(
        id="run_1",
        thread_id=None,
        status="failed",
        usage={"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
        last_error={"code": "server_error", "message": "boom"},
    )
    _install(monkeypatch, {}, run=run)
    got = _client().get_run("thread_1", "run_1")
    assert got.thread_id == "thread_1"
    assert got.is_terminal and not got.succeeded
    assert got.usage["prompt_tokens"] == 5
    assert got.last_error["code"] == "server_error"
    assert got.raw["id"] == "run_1"


def test_list_messages_reads_only_first_page(monkeypatch):
    captured = {}
    messages = [
        NS(
            id="msg_3",
            role=NS(value="assistant"),
            run_id="run_1",
            content=[_text("Hello"), NS(type="image_file", image_file=NS(file_id="f1")), NS(type="text", text=None)],
        ),
        NS(id="msg_2", role="user", run_id=None, content=[_text("Hi")]),
        NS(id="msg_1", role="user", run_id=None, content=[_text("older page")]),
    ]
    _install(monkeypatch, captured, messages=messages)
    got = _client().list_messages("thread_1", order="desc", limit=2)

    assert [m.id for m in got] == ["msg_3", "msg_2"]
    assert got[0].role == "assistant"
    assert got[0].text == "Hello"
    assert [s.type for s in got[0].content] == ["text", "image_file", "text"]
    assert got[0].content[2].text is None
    assert got[1].run_id is None
    assert captured["list"] == ("thread_1", ListSortOrder.DESCENDING, 2)


def test_stream_run_converts_sdk_events(monkeypatch):
    captured = {}
    events = [
        (NS(value="thread.run.created"), NS(id="run_1", thread_id="thread_1", status="queued", usage=None, last_error=None)),
        ("thread.run.step.created", {"id": "step_1"}),
        ("thread.message.delta", NS(id="msg_1", delta=NS(content=[_text("Hel")]))),
        (
            "thread.message.completed",
            NS(id="msg_1", role="assistant", run_id="run_1", content=[_text("Hello")]),
        ),
        (
            "thread.run.completed",
            NS(id="run_1", thread_id=None, status="completed", usage={"prompt_tokens": 5}, last_error=None),
        ),
        ("done", "[DONE]"),
    ]
    _install(monkeypatch, captured, events=events)
    got = list(_client().stream_run("thread_1", "A1"))

    assert [e.event for e in got] == [
        "thread.run.created",
        "thread.run.step.created",
        "thread.message.delta",
        "thread.message.completed",
        "thread.run.completed",
        "done",
    ]
    assert isinstance(got[0].data, Run)
    assert got[1].data == {"id": "step_1"}
    assert isinstance(got[2].data, MessageDelta) and got[2].data.text == "Hel"
    assert isinstance(got[3].data, ThreadMessage) and got[3].data.text == "Hello"
    assert got[4].data.succeeded and got[4].data.thread_id == "thread_1"
    assert captured["stream"] == ("thread_1", "A1")
    assert captured["stream_closed"] is True


def test_closing_stream_early_exits_sdk_stream(monkeypatch):
    captured = {}
    events = [
        ("thread.run.created", NS(id="run_1", thread_id="thread_1", status="queued", usage=None, last_error=None)),
        ("thread.run.in_progress", NS(id="run_1", thread_id="thread_1", status="in_progress", usage=None, last_error=None)),
    ]
    _install(monkeypatch, captured, events=events)
    stream = _client().stream_run("thread_1", "A1")
    assert next(stream).event == "thread.run.created"
    stream.close()
    assert captured["stream_closed"] is True


def test_stream_error_event_keeps_payload(monkeypatch):
    _install(monkeypatch, {}, events=[("error", "server_error: oops")])
    got = list(_client().stream_run("thread_1", "A1"))
    assert got[0].event == "error"
    assert got[0].data == "server_error: oops"


def _http_error(status):
    err = HttpResponseError(message="nope")
    err.status_code = status
    return err


@pytest.mark.parametrize(
    "error,exc_type,code,status",
    [
        (_http_error(429), RateLimitError, "RATE_LIMIT", 429),
        (_http_error(404), ApiError, "API_ERROR", 404),
        (_http_error(500), ApiError, "API_ERROR", 500),
        (ClientAuthenticationError(message="no credential"), ApiError, "AUTH_ERROR", 401),
        (ServiceRequestError(message="connection refused"), NetworkError, "NETWORK_ERROR", 503),
    ],
)
def test_sdk_errors_are_mapped(monkeypatch, error, exc_type, code, status):
    _install(monkeypatch, {}, error=error)
    with pytest.raises(exc_type) as exc:
        _client().create_thread()
    assert exc.value.code == code
    assert exc.value.http_status == status


def test_stream_errors_are_mapped(monkeypatch):
    _install(monkeypatch, {}, events=[(_http_error(429), None)])
    with pytest.raises(RateLimitError):
        list(_client().stream_run("thread_1", "A1"))


def test_resolve_project_endpoint():
    assert resolve_project_endpoint(PROJECT + "/") == PROJECT
    assert resolve_project_endpoint("https://res.cognitiveservices.azure.com/api/projects/p1") == PROJECT


@pytest.mark.parametrize(
    "connection,code",
    [
        ("", "MISSING_CONNECTION_STRING"),
        ("eastus.api.azureml.ms;sub;rg;proj", "INVALID_CONNECTION_STRING"),
        ("http://res.services.ai.azure.com/api/projects/p1", "INVALID_ENDPOINT"),
        ("https://res.services.ai.azure.com/", "INVALID_ENDPOINT"),
    ],
)
def test_resolve_rejects_bad_connections(connection, code):
    with pytest.raises(ValidationError) as exc:
        resolve_project_endpoint(connection)
    assert exc.value.code == code
