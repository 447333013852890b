import pytest

from adaptive_runner.backend import BackendError
from adaptive_runner.config import Settings
from adaptive_runner.models import ProgressState
from adaptive_runner.tools import ToolResult


class ScriptedBackend:
    """
    Completion backend that replays queued replies.

    A queued exception is raised instead of returned. Once the script is
    exhausted every call raises BackendError.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    async def complete(self, tier, instructions, context):
        self.calls.append((tier, instructions, context))
        if not self.responses:
            raise BackendError("script exhausted")
        reply = self.responses.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    @property
    def tiers(self):
        return [call[0] for call in self.calls]


class RecordingTools:
    """Tool service that records every call; `fail(tool, args)` returns error text or None."""

    def __init__(self, fail=None):
        self.calls = []
        self._fail = fail or (lambda tool, args: None)

    async def invoke(self, action_name, args):
        self.calls.append((action_name, dict(args)))
        error = self._fail(action_name, args)
        if error:
            return ToolResult(ok=False, error=f"{action_name}: {error}")
        return ToolResult(ok=True, output=f"{action_name} ok")


@pytest.fixture
def settings():
    return Settings(step_delay=0)


@pytest.fixture
def chain(settings):
    return settings.chain()


@pytest.fixture
def progress():
    return ProgressState(goal="test goal")


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def tools():
    return RecordingTools()
