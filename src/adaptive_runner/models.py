# models.py
# Data contracts for the adaptive task runner.
# Everything here is schema and validation, plus the two counters on
# ProgressState that must only ever move forward.

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ActionType(str, Enum):
    """Closed set of step kinds the classifier can recognise."""

    CREATE_DIRECTORY = "create_directory"
    CREATE_FILE = "create_file"
    LIST_FILES = "list_files"
    READ_FILE = "read_file"
    RUN_COMMAND = "run_command"
    COUNT_FILES = "count_files"
    UNKNOWN = "unknown"


class FailureKind(str, Enum):
    INVOCATION_FAILURE = "invocation_failure"
    BACKEND_PARSE_FAILURE = "backend_parse_failure"
    BACKEND_ERROR = "backend_error"
    CEILING_EXCEEDED = "ceiling_exceeded"


class InvocationRequest(BaseModel):
    """A single concrete call into the tool invocation service."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tool: str = Field(..., min_length=1, description="Registered tool name.")
    args: dict[str, str] = Field(default_factory=dict, description="Tool arguments.")


class Step(BaseModel):
    """One classified unit of work. Never mutated once created."""

    model_config = ConfigDict(frozen=True)

    ordinal: int = Field(..., ge=1, description="1-based position, stable for the whole run.")
    raw_text: str = Field(..., description="Instruction fragment this step came from.")
    action_type: ActionType
    target: str | None = None
    content: str | None = Field(default=None, description="Literal file content or command text.")
    suggested: InvocationRequest | None = Field(
        default=None,
        description="Request proposed by the planner; tried first for unknown steps.",
    )


class ExecutionOutcome(BaseModel):
    """Immutable log entry produced for every attempt at a step."""

    model_config = ConfigDict(frozen=True)

    step_ordinal: int
    attempt_number: int = Field(..., ge=1)
    tier: str
    succeeded: bool
    error_text: str | None = None
    failure_kind: FailureKind | None = None
    output: str = Field(default="", description="Confirmation text returned by the tool.")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class BackendProfile(BaseModel):
    """One rung of the escalation chain."""

    model_config = ConfigDict(frozen=True)

    tier_id: str
    ordinal_rank: int = Field(..., ge=0)
    supports_deterministic_params: bool
    model: str
    temperature: float | None = None


class Strategy(BaseModel):
    """Whole-task plan produced once, before any chunk is requested."""

    model_config = ConfigDict(extra="forbid")

    goal_description: str = Field(..., min_length=1)
    estimated_total_steps: int = Field(..., ge=1)
    approach_summary: str = ""
    critical_checkpoints: list[int] = Field(default_factory=list)


class Chunk(BaseModel):
    """A planner-proposed batch of steps executed as one adaptive cycle."""

    chunk_id: int = Field(..., ge=1)
    steps: list[Step] = Field(..., min_length=1)


class FailureRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_ordinal: int
    raw_text: str
    error_text: str


class ProgressState(BaseModel):
    """
    The single mutable aggregate for one run.

    Only record() and record_adaptation() touch the counters, so both
    completed_step_count and adaptation_count are monotonic.
    """

    goal: str
    strategy: Strategy | None = None
    completed_step_count: int = 0
    failure_records: list[FailureRecord] = Field(default_factory=list)
    adaptation_count: int = 0

    @property
    def failed_step_count(self) -> int:
        return len(self.failure_records)

    def record(self, outcome: ExecutionOutcome, step: Step) -> None:
        """Fold the final outcome of one step into the running totals."""
        if outcome.succeeded:
            self.completed_step_count += 1
            return
        self.failure_records.append(
            FailureRecord(
                step_ordinal=step.ordinal,
                raw_text=step.raw_text,
                error_text=outcome.error_text or "unknown error",
            )
        )

    def record_adaptation(self) -> None:
        self.adaptation_count += 1


class RunMode(str, Enum):
    NOTHING = "nothing"
    SEQUENTIAL = "sequential"
    ADAPTIVE = "adaptive"


class RunReport(BaseModel):
    """Completion report returned for every run, whatever happened."""

    mode: RunMode
    goal: str
    completed: int = 0
    failed: int = 0
    adaptations: int = 0
    chunk_cycles: int = 0
    message: str = ""

    @classmethod
    def from_progress(
        cls,
        progress: ProgressState,
        mode: RunMode,
        chunk_cycles: int = 0,
        message: str = "",
    ) -> "RunReport":
        return cls(
            mode=mode,
            goal=progress.goal,
            completed=progress.completed_step_count,
            failed=progress.failed_step_count,
            adaptations=progress.adaptation_count,
            chunk_cycles=chunk_cycles,
            message=message,
        )
