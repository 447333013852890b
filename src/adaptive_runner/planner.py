# planner.py
# Chunk Planner: the adaptive loop for large tasks.
#
# State machine:
#
#   Start → StrategyCreated → Planning → Executing → Evaluating
#         → (Planning | RecoveryNeeded | Done)
#   RecoveryNeeded → Planning
#
# The heaviest tier writes one Strategy for the whole task, then proposes the
# next bounded chunk of steps each cycle, conditioned only on the progress
# counters. Termination is guaranteed by a cycle bound derived from the
# strategy's step estimate.

import itertools
import logging
import math
from collections.abc import Callable
from enum import Enum

from adaptive_runner import display
from adaptive_runner.backend import CompletionBackend
from adaptive_runner.executor import StepExecutor
from adaptive_runner.models import (
    BackendProfile,
    Chunk,
    ExecutionOutcome,
    FailureRecord,
    ProgressState,
    RunMode,
    RunReport,
    Step,
    Strategy,
)
from adaptive_runner.parsing import BackendParseError, parse_chunk, parse_strategy
from adaptive_runner.recovery import RecoveryAnalyzer, to_steps
from adaptive_runner.selector import heaviest
from adaptive_runner.tools import TOOL_CATALOGUE

logger = logging.getLogger(__name__)

STRATEGY_PROMPT = """\
You are a strategic planner. Analyze the request and create an execution strategy.

Respond with ONLY a <strategy> block containing JSON of this exact shape:

<strategy>
{
  "goal_description": "clear description of the end goal",
  "estimated_total_steps": <integer>,
  "approach_summary": "description of the overall approach",
  "critical_checkpoints": [<completed-step counts where validation is crucial>]
}
</strategy>\
"""

CHUNK_PROMPT = (
    """\
You are planning the next execution chunk of a long task.

Consider what has already been completed and the errors encountered, and plan
the next {chunk_min}-{chunk_max} steps that move the task toward its goal. Do not
repeat work that is already complete. If the goal is fully achieved, respond
with an empty steps list.

Respond with ONLY a <chunk> block containing JSON of this exact shape:

<chunk>
{{
  "steps": [
    {{
      "action": "imperative description, e.g. Create file docs/a.md with \\"Title\\"",
      "tool": "tool_name",
      "args": {{"param_name": "<string value>"}}
    }}
  ]
}}
</chunk>

Available tools and their required JSON arguments:
"""
    + TOOL_CATALOGUE.replace("{", "{{").replace("}", "}}")
    + """

Every argument value is a string.\
"""
)


class PlannerState(str, Enum):
    START = "start"
    STRATEGY_CREATED = "strategy_created"
    PLANNING = "planning"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    RECOVERY_NEEDED = "recovery_needed"
    DONE = "done"


def success_rate(outcomes: list[ExecutionOutcome], chunk_size: int) -> float:
    if chunk_size <= 0:
        return 1.0
    return sum(1 for outcome in outcomes if outcome.succeeded) / chunk_size


def chunk_failures(steps: list[Step], outcomes: list[ExecutionOutcome]) -> list[FailureRecord]:
    return [
        FailureRecord(
            step_ordinal=step.ordinal,
            raw_text=step.raw_text,
            error_text=outcome.error_text or "unknown error",
        )
        for step, outcome in zip(steps, outcomes)
        if not outcome.succeeded
    ]


class ChunkPlanner:
    """
    Drives repeated plan → execute → evaluate → (recover) cycles.

    One planner serves one run; it owns the ProgressState it is handed for
    the duration of run().
    """

    def __init__(
        self,
        backend: CompletionBackend,
        executor: StepExecutor,
        analyzer: RecoveryAnalyzer,
        chain: list[BackendProfile],
        *,
        chunk_min: int = 5,
        chunk_max: int = 10,
        success_threshold: float = 0.8,
        done_ratio: float = 0.9,
        steps_per_chunk: int = 7,
        step_delay: float = 0.0,
        next_ordinal: Callable[[], int] | None = None,
    ) -> None:
        self._backend = backend
        self._executor = executor
        self._analyzer = analyzer
        self._tier = heaviest(chain).tier_id
        self._chunk_min = chunk_min
        self._chunk_max = chunk_max
        self._success_threshold = success_threshold
        self._done_ratio = done_ratio
        self._steps_per_chunk = steps_per_chunk
        self._step_delay = step_delay
        self._next_ordinal = next_ordinal or itertools.count(1).__next__
        self._chunk_ids = itertools.count(1)
        self._announced: set[int] = set()
        self.state = PlannerState.START
        self.chunk_cycles = 0
        self.failure_reason = ""

    def _transition(self, state: PlannerState) -> None:
        logger.debug("Planner %s -> %s", self.state.value, state.value)
        self.state = state

    # ------------------------------------------------------------------
    # Backend requests
    # ------------------------------------------------------------------

    async def create_strategy(self, instruction: str) -> Strategy | None:
        """One heaviest-tier request; None when the reply is unusable."""
        display.backend_request(self._tier, "creating strategy")
        try:
            response = await self._backend.complete(
                self._tier, STRATEGY_PROMPT, f"Request:\n{instruction}"
            )
            return parse_strategy(response)
        except BackendParseError as exc:
            logger.info("Strategy unusable: %s", exc)
            self.failure_reason = str(exc)
        except Exception as exc:
            logger.warning("Strategy request failed: %s", exc)
            self.failure_reason = f"backend error: {exc}"
        return None

    async def plan_next_chunk(self, instruction: str, progress: ProgressState) -> Chunk | None:
        """Ask for the next batch of steps; None ends the adaptive loop."""
        strategy = progress.strategy
        context = (
            f"Original request:\n{instruction}\n\n"
            "CURRENT STATE:\n"
            f"- Goal: {progress.goal}\n"
            f"- Approach: {strategy.approach_summary if strategy else '-'}\n"
            f"- Estimated total steps: {strategy.estimated_total_steps if strategy else '?'}\n"
            f"- Completed: {progress.completed_step_count} steps\n"
            f"- Failed: {progress.failed_step_count} steps\n"
            f"- Previous adaptations: {progress.adaptation_count}"
        )
        instructions = CHUNK_PROMPT.format(chunk_min=self._chunk_min, chunk_max=self._chunk_max)

        display.backend_request(
            self._tier, f"planning next chunk ({progress.completed_step_count} completed)"
        )
        try:
            response = await self._backend.complete(self._tier, instructions, context)
            proposal = parse_chunk(response)
        except BackendParseError as exc:
            logger.info("No usable chunk: %s", exc)
            return None
        except Exception as exc:
            logger.warning("Chunk request failed: %s", exc)
            return None

        proposed = proposal.steps
        if len(proposed) > self._chunk_max:
            logger.info("Truncating chunk of %d steps to %d", len(proposed), self._chunk_max)
            proposed = proposed[: self._chunk_max]

        return Chunk(chunk_id=next(self._chunk_ids), steps=to_steps(proposed, self._next_ordinal))

    # ------------------------------------------------------------------
    # Loop helpers
    # ------------------------------------------------------------------

    def max_cycles(self, strategy: Strategy) -> int:
        return max(1, math.ceil(strategy.estimated_total_steps / self._steps_per_chunk))

    def goal_reached(self, progress: ProgressState, strategy: Strategy) -> bool:
        return progress.completed_step_count >= strategy.estimated_total_steps * self._done_ratio

    def _announce_checkpoints(self, progress: ProgressState, strategy: Strategy) -> None:
        for checkpoint in strategy.critical_checkpoints:
            if checkpoint <= progress.completed_step_count and checkpoint not in self._announced:
                self._announced.add(checkpoint)
                display.checkpoint_reached(checkpoint, progress.completed_step_count)

    async def _recover(self, failures: list[FailureRecord], progress: ProgressState) -> None:
        display.recovery_start(len(failures))
        remediation = await self._analyzer.analyze(failures)
        display.recovery_plan(remediation)
        if remediation:
            await self._executor.run_sequence(remediation, progress, self._step_delay)
        progress.record_adaptation()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, instruction: str, progress: ProgressState) -> RunReport | None:
        """
        Execute the instruction adaptively.

        Returns None when no strategy could be created; the caller then
        falls back to sequential execution. Otherwise returns the report.
        """
        self.failure_reason = ""
        strategy = await self.create_strategy(instruction)
        if strategy is None:
            return None

        self._transition(PlannerState.STRATEGY_CREATED)
        progress.strategy = strategy
        progress.goal = strategy.goal_description
        display.strategy_created(strategy)

        limit = self.max_cycles(strategy)
        message = "chunk cycle limit reached"

        while self.chunk_cycles < limit:
            self._transition(PlannerState.PLANNING)
            chunk = await self.plan_next_chunk(instruction, progress)
            if chunk is None:
                display.no_more_chunks()
                message = "planner returned no further chunk"
                break

            self.chunk_cycles += 1
            display.chunk_planned(chunk, self.chunk_cycles, limit)

            self._transition(PlannerState.EXECUTING)
            outcomes = await self._executor.run_sequence(chunk.steps, progress, self._step_delay)

            self._transition(PlannerState.EVALUATING)
            rate = success_rate(outcomes, len(chunk.steps))
            succeeded = sum(1 for outcome in outcomes if outcome.succeeded)
            display.chunk_evaluated(succeeded, len(chunk.steps), rate, self._success_threshold)

            if rate < self._success_threshold:
                self._transition(PlannerState.RECOVERY_NEEDED)
                await self._recover(chunk_failures(chunk.steps, outcomes), progress)

            self._announce_checkpoints(progress, strategy)
            if self.goal_reached(progress, strategy):
                display.goal_reached(progress.completed_step_count, strategy.estimated_total_steps)
                message = "goal reached"
                break

        self._transition(PlannerState.DONE)
        return RunReport.from_progress(
            progress, RunMode.ADAPTIVE, chunk_cycles=self.chunk_cycles, message=message
        )
