# engine.py
# Top-level routing for one instruction:
#
#   raw text → Step Classifier
#     → no steps:        "nothing to execute", no backend calls
#     → few steps:       sequential Step Executor loop
#     → many steps:      Chunk Planner; falls back to sequential when no
#                        strategy can be created
#
# Every run gets a fresh ProgressState and always ends in a RunReport.

import itertools
import logging

from adaptive_runner import display
from adaptive_runner.backend import CompletionBackend
from adaptive_runner.classifier import classify
from adaptive_runner.config import Settings
from adaptive_runner.executor import StepExecutor
from adaptive_runner.models import BackendProfile, ProgressState, RunMode, RunReport, Step
from adaptive_runner.planner import ChunkPlanner
from adaptive_runner.recovery import RecoveryAnalyzer
from adaptive_runner.tools import ToolInvocationService

logger = logging.getLogger(__name__)

NOTHING_TO_EXECUTE = "nothing to execute"


def _goal_from(instruction: str, limit: int = 200) -> str:
    first_line = instruction.strip().splitlines()[0] if instruction.strip() else ""
    return first_line if len(first_line) <= limit else first_line[:limit] + "…"


class Engine:
    """
    Runs free-form instructions against a completion backend and a tool
    invocation service.

    Example:
        settings = Settings.from_env()
        engine = Engine(OpenRouterBackend(settings.chain()), LocalToolService("."), settings)
        report = await engine.run("1. Create directory out 2. List files in out")
    """

    def __init__(
        self,
        backend: CompletionBackend,
        tools: ToolInvocationService,
        settings: Settings | None = None,
        chain: list[BackendProfile] | None = None,
    ) -> None:
        self._backend = backend
        self._tools = tools
        self._settings = settings or Settings()
        self._chain = chain or self._settings.chain()
        self.progress: ProgressState | None = None
        self.executor: StepExecutor | None = None
        self.mode = RunMode.NOTHING

    @property
    def chain(self) -> list[BackendProfile]:
        return list(self._chain)

    def needs_adaptive(self, steps: list[Step]) -> bool:
        return len(steps) >= self._settings.adaptive_threshold

    def _new_executor(self) -> StepExecutor:
        return StepExecutor(
            self._backend,
            self._tools,
            self._chain,
            max_attempts=self._settings.max_attempts,
        )

    async def run_sequential(self, steps: list[Step], progress: ProgressState, message: str = "") -> RunReport:
        await self.executor.run_sequence(steps, progress, self._settings.step_delay)
        return RunReport.from_progress(progress, RunMode.SEQUENTIAL, message=message)

    async def run_adaptive(self, instruction: str, steps: list[Step], progress: ProgressState) -> RunReport:
        ordinals = itertools.count(len(steps) + 1)
        analyzer = RecoveryAnalyzer(self._backend, self._chain, next_ordinal=ordinals.__next__)
        planner = ChunkPlanner(
            self._backend,
            self.executor,
            analyzer,
            self._chain,
            chunk_min=self._settings.chunk_min,
            chunk_max=self._settings.chunk_max,
            success_threshold=self._settings.success_threshold,
            done_ratio=self._settings.done_ratio,
            steps_per_chunk=self._settings.steps_per_chunk,
            step_delay=self._settings.step_delay,
            next_ordinal=ordinals.__next__,
        )

        report = await planner.run(instruction, progress)
        if report is not None:
            return report

        display.strategy_fallback(planner.failure_reason)
        logger.info("Adaptive path unavailable, executing %d classified steps sequentially", len(steps))
        return await self.run_sequential(steps, progress, message="strategy unavailable; ran sequentially")

    async def run(self, instruction: str) -> RunReport:
        """
        Full pipeline entry point.

        Returns a RunReport in all cases; individual step failures are
        counted, never raised.
        """
        display.prompt_received(instruction)

        self.progress = ProgressState(goal=_goal_from(instruction))
        self.executor = self._new_executor()

        steps = classify(instruction)
        if not steps:
            display.nothing_to_execute()
            report = RunReport.from_progress(self.progress, RunMode.NOTHING, message=NOTHING_TO_EXECUTE)
            display.run_report(report)
            return report

        adaptive = self.needs_adaptive(steps)
        self.mode = RunMode.ADAPTIVE if adaptive else RunMode.SEQUENTIAL
        display.steps_classified(steps, self.mode.value)

        if adaptive:
            report = await self.run_adaptive(instruction, steps, self.progress)
        else:
            report = await self.run_sequential(steps, self.progress)

        display.run_report(report)
        return report

    def partial_report(self) -> RunReport:
        """Report on whatever was recorded so far; used after an interrupt."""
        progress = self.progress or ProgressState(goal="")
        return RunReport.from_progress(progress, self.mode, message="interrupted")
