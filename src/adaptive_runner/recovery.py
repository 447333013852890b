# recovery.py
# Recovery Analyzer: turns a batch of failures into remediation steps.
#
# Stateless apart from what it is handed. Only the failures it is given are
# sent (the current chunk's), never the full run history.

import itertools
import json
import logging
from collections.abc import Callable

from adaptive_runner import display
from adaptive_runner.backend import CompletionBackend
from adaptive_runner.classifier import classify_fragment
from adaptive_runner.executor import step_from_request
from adaptive_runner.models import BackendProfile, FailureRecord, Step
from adaptive_runner.parsing import BackendParseError, ProposedStep, parse_recovery
from adaptive_runner.selector import heaviest
from adaptive_runner.tools import TOOL_CATALOGUE

logger = logging.getLogger(__name__)

RECOVERY_PROMPT = (
    """\
You diagnose failed execution steps and propose concrete remediation.

You receive a list of failed steps, each with its number, the requested action
and the error it produced. Work out the most likely cause (a missing parent
directory, a wrong path, a command that does not exist, ...) and propose the
shortest list of actions that fixes it and completes the failed work.

Respond with ONLY a <recovery> block containing JSON of this exact shape:

<recovery>
{
  "analysis": "what went wrong, in one or two sentences",
  "recovery_steps": [
    {
      "action": "imperative description, e.g. Create directory out/logs",
      "tool": "tool_name",
      "args": {"param_name": "<string value>"},
      "reason": "why this fixes the failure"
    }
  ]
}
</recovery>

Available tools and their required JSON arguments:
"""
    + TOOL_CATALOGUE
    + """

Every argument value is a string. Return an empty recovery_steps list if nothing can be done.\
"""
)


def to_steps(proposals: list[ProposedStep], next_ordinal: Callable[[], int]) -> list[Step]:
    """
    Turn proposed actions into typed steps.

    A proposal carrying a known tool call is typed from that call, so its
    arguments (file content included) are executed as proposed. Anything
    else is typed from its prose by the classifier rule table; an unknown
    tool call still travels along as the step's suggestion.
    """
    steps = []
    for proposal in proposals:
        ordinal = next_ordinal()
        suggested = proposal.invocation()
        step = step_from_request(suggested, proposal.action, ordinal) if suggested else None
        if step is None:
            step = classify_fragment(proposal.action, ordinal)
            if suggested is not None:
                step = step.model_copy(update={"suggested": suggested})
        steps.append(step)
    return steps


def _describe(failures: list[FailureRecord]) -> str:
    return json.dumps(
        [
            {"step": record.step_ordinal, "action": record.raw_text, "error": record.error_text}
            for record in failures
        ],
        indent=2,
    )


class RecoveryAnalyzer:
    """Asks the heaviest tier to diagnose a failure batch."""

    def __init__(
        self,
        backend: CompletionBackend,
        chain: list[BackendProfile],
        next_ordinal: Callable[[], int] | None = None,
    ) -> None:
        self._backend = backend
        self._tier = heaviest(chain).tier_id
        self._next_ordinal = next_ordinal or itertools.count(1).__next__

    async def analyze(self, failure_records: list[FailureRecord]) -> list[Step] | None:
        """
        Return remediation steps for the given failures.

        Returns None when there is nothing to analyze or the reply cannot be
        used; the caller then moves on without remediation.
        """
        if not failure_records:
            return None

        display.backend_request(self._tier, f"analyzing {len(failure_records)} failure(s)")
        try:
            response = await self._backend.complete(
                self._tier, RECOVERY_PROMPT, f"Failures:\n{_describe(failure_records)}"
            )
            proposal = parse_recovery(response)
        except BackendParseError as exc:
            logger.info("Recovery plan unusable: %s", exc)
            return None
        except Exception as exc:
            logger.warning("Recovery request failed: %s", exc)
            return None

        if proposal.analysis:
            logger.info("Recovery analysis: %s", proposal.analysis)
        return to_steps(proposal.recovery_steps, self._next_ordinal)
