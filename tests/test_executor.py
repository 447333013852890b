import pytest
from unittest.mock import AsyncMock, MagicMock

from conftest import RecordingTools, ScriptedBackend

from adaptive_runner.classifier import classify, classify_fragment
from adaptive_runner.executor import StepExecutor, parent_directory, render_requests, step_from_request
from adaptive_runner.models import ActionType, FailureKind, InvocationRequest, Step

INVOKE_ECHO = '<invoke>{"tool": "execute_bash", "args": {"command": "echo hi"}}</invoke>'

# ---------------------------------------------------------------------------
# Deterministic rendering
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "target, parent",
    [("a.txt", None), ("proj/a.txt", "proj"), ("a/b/c.md", "a/b"), ("/abs.txt", None)],
)
def test_parent_directory(target, parent):
    assert parent_directory(target) == parent


def test_nested_file_write_gets_parent_directory_first():
    step = classify_fragment('Create file proj/a.txt with "hi"', 2)
    requests = render_requests(step)

    assert [r.tool for r in requests] == ["create_directory", "write_file"]
    assert requests[0].args == {"path": "proj"}
    assert requests[1].args == {"path": "proj/a.txt", "content": "hi"}


def test_top_level_file_write_is_single_request():
    step = classify_fragment('Create file a.txt with "hi"', 1)
    assert [r.tool for r in render_requests(step)] == ["write_file"]


def test_count_renders_as_bash():
    step = classify_fragment("Count files in src", 1)
    assert render_requests(step) == [
        InvocationRequest(tool="execute_bash", args={"command": "find src -type f | wc -l"})
    ]


def test_step_from_request_keeps_call_arguments():
    request = InvocationRequest(tool="write_file", args={"path": "src/app.py", "content": "print(1)\n"})
    step = step_from_request(request, "Create file src/app.py with the entry point", 6)

    assert step.action_type is ActionType.CREATE_FILE
    assert (step.target, step.content) == ("src/app.py", "print(1)\n")
    assert render_requests(step) == [
        InvocationRequest(tool="create_directory", args={"path": "src"}),
        request,
    ]


@pytest.mark.parametrize(
    "request_, expected",
    [
        (InvocationRequest(tool="execute_bash", args={"command": "make test"}), ActionType.RUN_COMMAND),
        (InvocationRequest(tool="list_files", args={}), ActionType.LIST_FILES),
        (InvocationRequest(tool="read_file", args={"path": ""}), None),
        (InvocationRequest(tool="execute_bash", args={}), None),
        (InvocationRequest(tool="send_message", args={"to": "ops"}), None),
    ],
)
def test_step_from_request_types(request_, expected):
    step = step_from_request(request_, "proposed action", 1)
    assert (step.action_type if step else None) is expected


def test_unknown_has_no_deterministic_rendering():
    step = Step(ordinal=1, raw_text="do something", action_type=ActionType.UNKNOWN)
    with pytest.raises(ValueError, match="no deterministic rendering"):
        render_requests(step)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sequence_executes_in_order(chain, progress, backend, tools):
    steps = classify('1. Create directory proj 2. Create file proj/a.txt with "hi" 3. List files in proj')
    executor = StepExecutor(backend, tools, chain)

    outcomes = await executor.run_sequence(steps, progress)

    assert [call[0] for call in tools.calls] == [
        "create_directory",
        "create_directory",
        "write_file",
        "list_files",
    ]
    assert all(o.succeeded for o in outcomes)
    assert [o.step_ordinal for o in outcomes] == [1, 2, 3]
    assert progress.completed_step_count == 3
    assert backend.calls == []


@pytest.mark.asyncio
async def test_retry_ceiling_and_tier_escalation(chain, progress, backend):
    tools = RecordingTools(fail=lambda tool, args: "permission denied")
    executor = StepExecutor(backend, tools, chain, max_attempts=3)
    step = classify_fragment("Create directory locked", 1)

    outcome = await executor.execute(step, progress)

    assert outcome.succeeded is False
    assert outcome.failure_kind is FailureKind.CEILING_EXCEEDED
    assert outcome.attempt_number == 3
    assert "permission denied" in outcome.error_text
    assert [o.tier for o in executor.log] == ["fast", "general", "heavyweight"]
    assert [o.attempt_number for o in executor.log] == [1, 2, 3]
    assert [o.failure_kind for o in executor.log[:2]] == [FailureKind.INVOCATION_FAILURE] * 2
    assert len(tools.calls) == 3


@pytest.mark.asyncio
async def test_success_on_retry_stops_attempts(chain, progress, backend):
    calls = iter(["busy", None, None])
    tools = RecordingTools(fail=lambda tool, args: next(calls))
    executor = StepExecutor(backend, tools, chain)

    outcome = await executor.execute(classify_fragment("Create file a.txt with \"x\"", 1), progress)

    assert outcome.succeeded is True
    assert outcome.attempt_number == 2
    assert outcome.tier == "heavyweight"
    assert len(executor.log) == 2


@pytest.mark.asyncio
async def test_unknown_step_is_translated_by_backend(chain, progress, tools):
    backend = ScriptedBackend([INVOKE_ECHO])
    executor = StepExecutor(backend, tools, chain)
    step = classify_fragment("Say hi to the user", 1)

    outcome = await executor.execute(step, progress)

    assert outcome.succeeded is True
    assert tools.calls == [("execute_bash", {"command": "echo hi"})]
    assert backend.tiers == ["general"]
    assert "Say hi to the user" in backend.calls[0][2]
    assert "test goal" in backend.calls[0][2]


@pytest.mark.asyncio
async def test_unparseable_reply_escalates_with_error_context(chain, progress, tools):
    backend = ScriptedBackend(["I would echo hi", INVOKE_ECHO])
    executor = StepExecutor(backend, tools, chain)

    outcome = await executor.execute(classify_fragment("Say hi", 1), progress)

    assert outcome.succeeded is True
    assert executor.log[0].failure_kind is FailureKind.BACKEND_PARSE_FAILURE
    assert backend.tiers == ["general", "heavyweight"]
    assert "previous attempt failed" in backend.calls[1][2]


@pytest.mark.asyncio
async def test_suggested_request_is_tried_before_backend(chain, progress, backend, tools):
    step = Step(
        ordinal=4,
        raw_text="Record the build date",
        action_type=ActionType.UNKNOWN,
        suggested=InvocationRequest(tool="execute_bash", args={"command": "date > built.txt"}),
    )
    executor = StepExecutor(backend, tools, chain)

    outcome = await executor.execute(step, progress)

    assert outcome.succeeded is True
    assert backend.calls == []
    assert tools.calls == [("execute_bash", {"command": "date > built.txt"})]


@pytest.mark.asyncio
async def test_backend_exceptions_become_outcomes(chain, progress, tools):
    backend = MagicMock()
    backend.complete = AsyncMock(side_effect=RuntimeError("connection reset"))
    executor = StepExecutor(backend, tools, chain)

    outcome = await executor.execute(classify_fragment("Say hi", 1), progress)

    assert outcome.succeeded is False
    assert outcome.failure_kind is FailureKind.CEILING_EXCEEDED
    assert "connection reset" in outcome.error_text
    assert [o.failure_kind for o in executor.log[:2]] == [FailureKind.BACKEND_ERROR] * 2
    assert backend.complete.await_count == 3
    assert tools.calls == []


@pytest.mark.asyncio
async def test_tool_service_exception_becomes_outcome(chain, progress, backend):
    tools = MagicMock()
    tools.invoke = AsyncMock(side_effect=OSError("disk full"))
    executor = StepExecutor(backend, tools, chain, max_attempts=1)

    outcome = await executor.execute(classify_fragment("Create directory x", 1), progress)

    assert outcome.succeeded is False
    assert "disk full" in outcome.error_text
    assert outcome.failure_kind is FailureKind.CEILING_EXCEEDED


@pytest.mark.asyncio
async def test_failed_steps_are_recorded_and_sequence_continues(chain, progress, backend):
    tools = RecordingTools(fail=lambda tool, args: "boom" if args.get("path") == "bad" else None)
    executor = StepExecutor(backend, tools, chain)
    steps = classify("1. Create directory good 2. Create directory bad 3. Create directory also_good")

    outcomes = await executor.run_sequence(steps, progress)

    assert [o.succeeded for o in outcomes] == [True, False, True]
    assert progress.completed_step_count == 2
    assert progress.failed_step_count == 1
    assert progress.failure_records[0].step_ordinal == 2


def test_max_attempts_must_be_positive(chain, backend, tools):
    with pytest.raises(ValueError):
        StepExecutor(backend, tools, chain, max_attempts=0)
