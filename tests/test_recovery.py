import itertools
import json

import pytest

from conftest import ScriptedBackend

from adaptive_runner.models import ActionType, FailureRecord
from adaptive_runner.recovery import RecoveryAnalyzer

FAILURES = [
    FailureRecord(step_ordinal=3, raw_text="Create file out/a.txt with \"x\"", error_text="parent missing"),
    FailureRecord(step_ordinal=6, raw_text="Run: foo --build", error_text="foo: command not found"),
]


def _recovery(steps, analysis="out/ was never created"):
    return "<recovery>" + json.dumps({"analysis": analysis, "recovery_steps": steps}) + "</recovery>"


@pytest.mark.asyncio
async def test_no_failures_means_no_request(chain):
    backend = ScriptedBackend()
    analyzer = RecoveryAnalyzer(backend, chain)

    assert await analyzer.analyze([]) is None
    assert backend.calls == []


@pytest.mark.asyncio
async def test_remediation_steps_are_classified(chain):
    backend = ScriptedBackend(
        [
            _recovery(
                [
                    {"action": "Create directory out", "tool": "create_directory", "args": {"path": "out"}},
                    {"action": "Install the build tool", "tool": "execute_bash", "args": {"command": "pip install foo"}},
                ]
            )
        ]
    )
    analyzer = RecoveryAnalyzer(backend, chain, next_ordinal=itertools.count(11).__next__)

    steps = await analyzer.analyze(FAILURES)

    assert [s.ordinal for s in steps] == [11, 12]
    assert steps[0].action_type is ActionType.CREATE_DIRECTORY
    assert steps[0].target == "out"
    assert steps[1].action_type is ActionType.RUN_COMMAND
    assert steps[1].content == "pip install foo"
    assert backend.tiers == ["heavyweight"]


@pytest.mark.asyncio
async def test_only_given_failures_are_sent(chain):
    backend = ScriptedBackend([_recovery([])])
    analyzer = RecoveryAnalyzer(backend, chain)

    assert await analyzer.analyze(FAILURES[:1]) == []

    context = backend.calls[0][2]
    assert "parent missing" in context
    assert "command not found" not in context


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", ["I think you should create the directory.", ValueError("rate limited")])
async def test_unusable_reply_yields_no_remediation(chain, reply):
    analyzer = RecoveryAnalyzer(ScriptedBackend([reply]), chain)
    assert await analyzer.analyze(FAILURES) is None


@pytest.mark.asyncio
async def test_unknown_tool_keeps_prose_typing_and_suggestion(chain):
    backend = ScriptedBackend(
        [_recovery([{"action": "Notify the team", "tool": "send_message", "args": {"to": "ops"}}])]
    )

    steps = await RecoveryAnalyzer(backend, chain).analyze(FAILURES)

    assert steps[0].action_type is ActionType.UNKNOWN
    assert steps[0].suggested.tool == "send_message"
