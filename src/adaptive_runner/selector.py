# selector.py
# Strategy Selector: picks the backend tier for the next attempt at a step.
#
# Pure function over an explicit escalation chain. Each failure of the same
# step moves the next attempt one rank up, saturating at the top; there is
# no wraparound and no de-escalation within one step's retries.

from adaptive_runner.models import ActionType, BackendProfile

# Steps whose tool request is fully determined by the classifier.
DETERMINISTIC_ACTIONS = frozenset(
    {
        ActionType.CREATE_DIRECTORY,
        ActionType.LIST_FILES,
        ActionType.COUNT_FILES,
        ActionType.READ_FILE,
    }
)


def ordered(chain: list[BackendProfile]) -> list[BackendProfile]:
    """The chain sorted by ordinal rank, lowest first."""
    if not chain:
        raise ValueError("Escalation chain must contain at least one backend profile.")
    return sorted(chain, key=lambda profile: profile.ordinal_rank)


def heaviest(chain: list[BackendProfile]) -> BackendProfile:
    return ordered(chain)[-1]


def base_position(action_type: ActionType, chain_length: int) -> int:
    """Index in the ordered chain where a fresh step of this type starts."""
    if action_type in DETERMINISTIC_ACTIONS:
        return 0
    # Content-bearing, side-effecting and unknown steps start in the middle.
    return min(1, chain_length - 1)


def select_tier(
    action_type: ActionType,
    prior_failures: int,
    chain: list[BackendProfile],
) -> BackendProfile:
    """
    Return the profile for the next attempt at a step.

    `prior_failures` counts failed attempts of this same step only.
    """
    if prior_failures < 0:
        raise ValueError(f"prior_failures must be non-negative, got {prior_failures}.")

    profiles = ordered(chain)
    top = len(profiles) - 1

    if action_type is ActionType.UNKNOWN and prior_failures >= 1:
        return profiles[top]

    position = min(base_position(action_type, len(profiles)) + prior_failures, top)
    return profiles[position]
