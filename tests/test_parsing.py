import json

import pytest

from adaptive_runner.parsing import (
    BackendParseError,
    parse_chunk,
    parse_invocation,
    parse_recovery,
    parse_strategy,
)

STRATEGY = {
    "goal_description": "Scaffold a service",
    "estimated_total_steps": 25,
    "approach_summary": "directories first, then files",
    "critical_checkpoints": [5, 20],
}


def _wrap(tag, payload):
    return f"<{tag}>{json.dumps(payload)}</{tag}>"


# ---------------------------------------------------------------------------
# Invocation requests
# ---------------------------------------------------------------------------

def test_parse_invocation_tool_shape():
    request = parse_invocation(_wrap("invoke", {"tool": "write_file", "args": {"path": "a.txt", "content": "x"}}))
    assert request.tool == "write_file"
    assert request.args == {"path": "a.txt", "content": "x"}


def test_parse_invocation_function_call_shape():
    request = parse_invocation(_wrap("invoke", {"name": "list_files", "arguments": {"path": "."}}))
    assert request.tool == "list_files"
    assert request.args == {"path": "."}


def test_parse_invocation_ignores_surrounding_prose():
    response = "Sure, here it is:\n" + _wrap("invoke", {"tool": "read_file", "args": {"path": "x"}}) + "\nDone."
    assert parse_invocation(response).tool == "read_file"


def test_parse_invocation_accepts_full_json_fence():
    response = '<invoke>\n```json\n{"tool": "execute_bash", "args": {"command": "ls"}}\n```\n</invoke>'
    assert parse_invocation(response).args == {"command": "ls"}


@pytest.mark.parametrize(
    "response",
    [
        "",
        '{"tool": "read_file", "args": {"path": "x"}}',
        "<invoke>not json</invoke>",
        '<invoke>{"tool": "read_file", "args": {"path": "x"}</invoke>',
        '<invoke>["read_file"]</invoke>',
        '<invoke>{"tool": "read_file", "args": {}, "why": "extra"}</invoke>',
        '<invoke>{"name": "read_file", "arguments": {}, "id": 1}</invoke>',
        '<invoke>{"args": {"path": "x"}}</invoke>',
        '<invoke>{"tool": "a", "args": {}}</invoke><invoke>{"tool": "b", "args": {}}</invoke>',
    ],
)
def test_parse_invocation_fails_closed(response):
    with pytest.raises(BackendParseError):
        parse_invocation(response)


# ---------------------------------------------------------------------------
# Strategy / chunk / recovery
# ---------------------------------------------------------------------------

def test_parse_strategy_valid():
    strategy = parse_strategy(_wrap("strategy", STRATEGY))
    assert strategy.estimated_total_steps == 25
    assert strategy.critical_checkpoints == [5, 20]


def test_parse_strategy_rejects_zero_estimate():
    with pytest.raises(BackendParseError, match="Strategy is invalid"):
        parse_strategy(_wrap("strategy", {**STRATEGY, "estimated_total_steps": 0}))


def test_parse_strategy_wrong_tag():
    with pytest.raises(BackendParseError, match="exactly one <strategy>"):
        parse_strategy(_wrap("plan", STRATEGY))


def test_parse_chunk_steps():
    proposal = parse_chunk(
        _wrap(
            "chunk",
            {
                "steps": [
                    {"action": "Create directory docs", "tool": "create_directory", "args": {"path": "docs"}},
                    {"action": "Summarize the docs"},
                ]
            },
        )
    )
    assert len(proposal.steps) == 2
    assert proposal.steps[0].invocation().tool == "create_directory"
    assert proposal.steps[1].invocation() is None


def test_parse_chunk_empty_is_rejected():
    with pytest.raises(BackendParseError):
        parse_chunk(_wrap("chunk", {"steps": []}))


def test_parse_recovery_allows_no_steps():
    proposal = parse_recovery(_wrap("recovery", {"analysis": "nothing to fix", "recovery_steps": []}))
    assert proposal.analysis == "nothing to fix"
    assert proposal.recovery_steps == []


def test_parse_recovery_rejects_unknown_step_keys():
    payload = {"recovery_steps": [{"action": "Create directory x", "priority": "high"}]}
    with pytest.raises(BackendParseError):
        parse_recovery(_wrap("recovery", payload))
