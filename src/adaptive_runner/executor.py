# executor.py
# Step Executor: turns one Step into tool invocations, with bounded retry
# and tier escalation.
#
# Known action types map deterministically onto tool requests. Unknown steps
# are translated by the completion backend at the tier the selector picks.
# Failure is data: a step that exhausts its attempts comes back as a failed
# ExecutionOutcome, it never raises.

import asyncio
import logging
import posixpath

from adaptive_runner import display
from adaptive_runner.backend import BackendError, CompletionBackend
from adaptive_runner.models import (
    ActionType,
    BackendProfile,
    ExecutionOutcome,
    FailureKind,
    InvocationRequest,
    ProgressState,
    Step,
)
from adaptive_runner.parsing import BackendParseError, parse_invocation
from adaptive_runner.selector import select_tier
from adaptive_runner.tools import TOOL_CATALOGUE, ToolInvocationService, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

EXECUTOR_PROMPT = (
    """\
You translate a single instruction step into exactly one tool call.

Respond with ONLY an <invoke> block containing a JSON object of this exact shape:

<invoke>
{"tool": "<tool_name>", "args": {"<param_name>": "<string value>"}}
</invoke>

Available tools and their required JSON arguments:
"""
    + TOOL_CATALOGUE
    + """

All paths are relative to the workspace root. Every argument value is a string.
Do not add any text outside the <invoke> block.\
"""
)


# ---------------------------------------------------------------------------
# Deterministic rendering
# ---------------------------------------------------------------------------


def parent_directory(target: str) -> str | None:
    """Parent path of `target`, or None when it has no directory part."""
    if "/" not in target.strip("/"):
        return None
    parent = posixpath.dirname(target.rstrip("/"))
    return parent or None


def render_requests(step: Step) -> list[InvocationRequest]:
    """
    Map a recognised step onto its tool requests, in order.

    A file write into a nested path is always preceded by a directory
    request for its parent.
    """
    target = step.target or ""
    kind = step.action_type
    if kind is ActionType.CREATE_DIRECTORY:
        return [InvocationRequest(tool="create_directory", args={"path": target})]
    if kind is ActionType.CREATE_FILE:
        requests = []
        parent = parent_directory(target)
        if parent:
            requests.append(InvocationRequest(tool="create_directory", args={"path": parent}))
        requests.append(
            InvocationRequest(tool="write_file", args={"path": target, "content": step.content or ""})
        )
        return requests
    if kind is ActionType.LIST_FILES:
        return [InvocationRequest(tool="list_files", args={"path": target or "."})]
    if kind is ActionType.READ_FILE:
        return [InvocationRequest(tool="read_file", args={"path": target})]
    if kind in (ActionType.RUN_COMMAND, ActionType.COUNT_FILES):
        return [InvocationRequest(tool="execute_bash", args={"command": step.content or ""})]
    raise ValueError(f"Step {step.ordinal} has no deterministic rendering ({kind.value}).")


# Tool name -> (action type, arg carried as target, arg carried as content).
_REQUEST_FIELDS = {
    "create_directory": (ActionType.CREATE_DIRECTORY, "path", None),
    "write_file": (ActionType.CREATE_FILE, "path", "content"),
    "list_files": (ActionType.LIST_FILES, "path", None),
    "read_file": (ActionType.READ_FILE, "path", None),
    "execute_bash": (ActionType.RUN_COMMAND, None, "command"),
}


def step_from_request(request: InvocationRequest, raw_text: str, ordinal: int) -> Step | None:
    """
    Build a typed step from a proposed tool call.

    The call's own arguments become the step's target and content, so
    rendering the step reproduces the call (plus the parent directory
    request for nested writes). None for tools outside the table or calls
    missing their required argument.
    """
    fields = _REQUEST_FIELDS.get(request.tool)
    if fields is None:
        return None
    action_type, target_key, content_key = fields

    target = request.args.get(target_key, "").strip() if target_key else None
    if target_key and not target:
        if action_type is not ActionType.LIST_FILES:
            return None
        target = "."
    content = request.args.get(content_key, "") if content_key else None
    if action_type is ActionType.RUN_COMMAND and not content.strip():
        return None

    return Step(
        ordinal=ordinal,
        raw_text=raw_text,
        action_type=action_type,
        target=target,
        content=content,
        suggested=request,
    )


# ---------------------------------------------------------------------------
# StepExecutor
# ---------------------------------------------------------------------------


class StepExecutor:
    """
    Executes steps one at a time and keeps the outcome log.

    Every attempt, retries included, appends one ExecutionOutcome to `log`.
    """

    def __init__(
        self,
        backend: CompletionBackend,
        tools: ToolInvocationService,
        chain: list[BackendProfile],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        self._backend = backend
        self._tools = tools
        self._chain = chain
        self._max_attempts = max_attempts
        self.log: list[ExecutionOutcome] = []

    # ------------------------------------------------------------------
    # Request rendering
    # ------------------------------------------------------------------

    async def _request_from_backend(
        self,
        step: Step,
        profile: BackendProfile,
        progress: ProgressState,
        last_error: str | None,
    ) -> InvocationRequest:
        context = f"Overall goal: {progress.goal}\n\nStep {step.ordinal}: {step.raw_text}"
        if last_error:
            context += (
                f"\n\nThe previous attempt failed with:\n{last_error}\n"
                "Propose a call that avoids this error."
            )
        display.backend_request(profile.tier_id, "translating step into a tool call")
        response = await self._backend.complete(profile.tier_id, EXECUTOR_PROMPT, context)
        return parse_invocation(response)

    async def _render(
        self,
        step: Step,
        attempt: int,
        profile: BackendProfile,
        progress: ProgressState,
        last_error: str | None,
    ) -> list[InvocationRequest]:
        if step.action_type is not ActionType.UNKNOWN:
            return render_requests(step)
        if attempt == 1 and step.suggested is not None:
            return [step.suggested]
        return [await self._request_from_backend(step, profile, progress, last_error)]

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    def _outcome(
        self,
        step: Step,
        attempt: int,
        profile: BackendProfile,
        error: str | None = None,
        kind: FailureKind | None = None,
        output: str = "",
    ) -> ExecutionOutcome:
        return ExecutionOutcome(
            step_ordinal=step.ordinal,
            attempt_number=attempt,
            tier=profile.tier_id,
            succeeded=error is None,
            error_text=error,
            failure_kind=kind,
            output=output,
        )

    async def _attempt(
        self,
        step: Step,
        attempt: int,
        profile: BackendProfile,
        progress: ProgressState,
        last_error: str | None,
    ) -> ExecutionOutcome:
        try:
            requests = await self._render(step, attempt, profile, progress, last_error)
        except BackendParseError as exc:
            logger.info("Step %d: unparseable backend reply: %s", step.ordinal, exc)
            return self._outcome(step, attempt, profile, str(exc), FailureKind.BACKEND_PARSE_FAILURE)
        except BackendError as exc:
            return self._outcome(step, attempt, profile, str(exc), FailureKind.BACKEND_ERROR)
        except Exception as exc:
            # Any collaborator failure is an outcome, never fatal to the run.
            logger.warning("Step %d: backend raised %s", step.ordinal, exc, exc_info=True)
            return self._outcome(step, attempt, profile, f"backend error: {exc}", FailureKind.BACKEND_ERROR)

        outputs: list[str] = []
        for request in requests:
            display.invocation(request.tool, request.args)
            try:
                result = await self._tools.invoke(request.tool, dict(request.args))
            except Exception as exc:
                logger.warning("Step %d: tool service raised %s", step.ordinal, exc, exc_info=True)
                result = ToolResult(ok=False, error=f"{request.tool}: {exc}")
            if not result.ok:
                error = result.error or f"{request.tool} failed."
                return self._outcome(step, attempt, profile, error, FailureKind.INVOCATION_FAILURE)
            outputs.append(result.output)

        return self._outcome(step, attempt, profile, output="\n".join(outputs))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, step: Step, progress: ProgressState) -> ExecutionOutcome:
        """
        Run one step to success or to the attempt ceiling.

        Returns the final outcome; the step is permanently failed when it
        carries FailureKind.CEILING_EXCEEDED.
        """
        last_error: str | None = None
        outcome: ExecutionOutcome | None = None

        for attempt in range(1, self._max_attempts + 1):
            profile = select_tier(step.action_type, attempt - 1, self._chain)
            if attempt == 1:
                display.step_start(step, profile.tier_id)

            outcome = await self._attempt(step, attempt, profile, progress, last_error)

            if outcome.succeeded:
                self.log.append(outcome)
                display.step_succeeded(outcome)
                return outcome

            last_error = outcome.error_text
            if attempt == self._max_attempts:
                outcome = outcome.model_copy(update={"failure_kind": FailureKind.CEILING_EXCEEDED})
                self.log.append(outcome)
                break

            self.log.append(outcome)
            next_tier = select_tier(step.action_type, attempt, self._chain).tier_id
            logger.info(
                "Step %d attempt %d failed on %s, retrying on %s",
                step.ordinal, attempt, profile.tier_id, next_tier,
            )
            display.attempt_failed(outcome, next_tier)

        display.step_failed(outcome)
        return outcome

    async def run_sequence(
        self,
        steps: list[Step],
        progress: ProgressState,
        delay: float = 0.0,
    ) -> list[ExecutionOutcome]:
        """
        Execute `steps` strictly in order, recording each into `progress`.

        Progress is updated per step, so stopping between any two steps
        leaves it consistent.
        """
        outcomes: list[ExecutionOutcome] = []
        for index, step in enumerate(steps):
            if index and delay:
                await asyncio.sleep(delay)
            outcome = await self.execute(step, progress)
            progress.record(outcome, step)
            outcomes.append(outcome)
        return outcomes
