import pytest

from foundry_core.domain.exceptions import ValidationError
from foundry_core.domain.models import Run
from foundry_core.runtime.usage import collect_usage


def test_missing_usage_defaults_to_zero():
    usage = collect_usage(Run(id="r", thread_id="t", status="completed", usage=None))
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (0, 0, 0)


def test_partial_usage_fields():
    usage = collect_usage(Run(id="r", thread_id="t", status="failed", usage={"prompt_tokens": 7}))
    assert usage.prompt_tokens == 7
    assert usage.completion_tokens == 0
    assert usage.total_tokens == 7


def test_usage_of_running_run_is_rejected():
    run = Run(id="r", thread_id="t", status="in_progress", usage={"prompt_tokens": 5, "completion_tokens": 2})
    with pytest.raises(ValidationError) as exc:
        collect_usage(run)
    assert exc.value.code == "RUN_NOT_TERMINAL"
