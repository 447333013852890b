import pytest

from adaptive_runner.models import ActionType, BackendProfile
from adaptive_runner.selector import base_position, heaviest, ordered, select_tier

# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------

def _ranks(action_type, chain, attempts=5):
    return [select_tier(action_type, n, chain).ordinal_rank for n in range(attempts)]


@pytest.mark.parametrize("action_type", list(ActionType))
def test_escalation_is_monotonic_and_saturates(action_type, chain):
    ranks = _ranks(action_type, chain)
    assert ranks == sorted(ranks)
    assert ranks[-1] == 2


def test_deterministic_steps_start_cheapest(chain):
    assert _ranks(ActionType.CREATE_DIRECTORY, chain) == [0, 1, 2, 2, 2]
    assert _ranks(ActionType.LIST_FILES, chain)[0] == 0


def test_content_steps_start_in_the_middle(chain):
    assert _ranks(ActionType.CREATE_FILE, chain) == [1, 2, 2, 2, 2]
    assert _ranks(ActionType.RUN_COMMAND, chain)[0] == 1


def test_unknown_jumps_to_top_after_first_failure(chain):
    assert select_tier(ActionType.UNKNOWN, 0, chain).tier_id == "general"
    assert select_tier(ActionType.UNKNOWN, 1, chain).tier_id == "heavyweight"


def test_chain_order_comes_from_rank_not_position(chain):
    shuffled = [chain[2], chain[0], chain[1]]
    assert [p.tier_id for p in ordered(shuffled)] == ["fast", "general", "heavyweight"]
    assert select_tier(ActionType.CREATE_DIRECTORY, 0, shuffled).tier_id == "fast"
    assert heaviest(shuffled).tier_id == "heavyweight"


def test_single_tier_chain():
    only = [BackendProfile(tier_id="solo", ordinal_rank=0, supports_deterministic_params=True, model="m")]
    assert base_position(ActionType.CREATE_FILE, 1) == 0
    assert select_tier(ActionType.UNKNOWN, 3, only).tier_id == "solo"


# ---------------------------------------------------------------------------
# Invalid input
# ---------------------------------------------------------------------------

def test_negative_failures_rejected(chain):
    with pytest.raises(ValueError, match="non-negative"):
        select_tier(ActionType.CREATE_FILE, -1, chain)


def test_empty_chain_rejected():
    with pytest.raises(ValueError, match="at least one"):
        select_tier(ActionType.CREATE_FILE, 0, [])
