# parsing.py
# Strict parsers for structured completion-backend responses.
#
# Every structured reply must carry exactly one tag-delimited JSON object,
# e.g. <strategy>{...}</strategy>. The whole block must be valid JSON and
# must validate against one of a small set of known shapes. Anything else
# fails closed with BackendParseError; no partial or fuzzy brace recovery.

import json
import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from adaptive_runner.models import InvocationRequest, Strategy


class BackendParseError(Exception):
    """Raised when a backend response does not match the expected structured shape."""


# ---------------------------------------------------------------------------
# Wire shapes
# ---------------------------------------------------------------------------


class _FunctionCallShape(BaseModel):
    """Alternative invocation shape: {"name": ..., "arguments": {...}}."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    arguments: dict[str, str] = Field(default_factory=dict)


class ProposedStep(BaseModel):
    """A step as proposed by the planner or the recovery analyzer."""

    model_config = ConfigDict(extra="forbid")

    action: str = Field(..., min_length=1, description="Imperative description of the step.")
    tool: str | None = None
    args: dict[str, str] = Field(default_factory=dict)
    reason: str = ""

    def invocation(self) -> InvocationRequest | None:
        if not self.tool:
            return None
        return InvocationRequest(tool=self.tool, args=self.args)


class ChunkProposal(BaseModel):
    model_config = ConfigDict(extra="forbid")

    steps: list[ProposedStep] = Field(..., min_length=1)


class RecoveryProposal(BaseModel):
    model_config = ConfigDict(extra="forbid")

    analysis: str = ""
    recovery_steps: list[ProposedStep] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Block extraction
# ---------------------------------------------------------------------------

_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


def _tagged_object(response: str, tag: str) -> dict:
    """
    Return the JSON object inside the single <tag>...</tag> block.

    Raises BackendParseError if the tag is missing or repeated, or if the
    content is not one complete JSON object.
    """
    blocks = re.findall(rf"<{tag}>(.*?)</{tag}>", response or "", re.DOTALL)
    if len(blocks) != 1:
        raise BackendParseError(f"Expected exactly one <{tag}> block, found {len(blocks)}.")

    raw = blocks[0].strip()
    fenced = _FENCE.match(raw)
    if fenced:
        raw = fenced.group(1).strip()

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise BackendParseError(f"<{tag}> content is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise BackendParseError(f"<{tag}> content must be a JSON object.")
    return data


# ---------------------------------------------------------------------------
# Public parsers
# ---------------------------------------------------------------------------


def parse_invocation(response: str) -> InvocationRequest:
    """Parse an <invoke> block in either {"tool", "args"} or {"name", "arguments"} form."""
    data = _tagged_object(response, "invoke")
    try:
        if "tool" in data:
            return InvocationRequest.model_validate(data)
        call = _FunctionCallShape.model_validate(data)
    except ValidationError as exc:
        raise BackendParseError(f"Invocation request is invalid: {exc}") from exc
    return InvocationRequest(tool=call.name, args=call.arguments)


def parse_strategy(response: str) -> Strategy:
    data = _tagged_object(response, "strategy")
    try:
        return Strategy.model_validate(data)
    except ValidationError as exc:
        raise BackendParseError(f"Strategy is invalid: {exc}") from exc


def parse_chunk(response: str) -> ChunkProposal:
    data = _tagged_object(response, "chunk")
    try:
        return ChunkProposal.model_validate(data)
    except ValidationError as exc:
        raise BackendParseError(f"Chunk is invalid: {exc}") from exc


def parse_recovery(response: str) -> RecoveryProposal:
    data = _tagged_object(response, "recovery")
    try:
        return RecoveryProposal.model_validate(data)
    except ValidationError as exc:
        raise BackendParseError(f"Recovery plan is invalid: {exc}") from exc
