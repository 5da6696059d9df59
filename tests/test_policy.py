import pytest

from dispatch.policy import DispatchPolicy, default_dispatch_policy, policy_from_env


def test_default_policy_values():
    p = default_dispatch_policy()
    assert p.stale_presence_seconds == 120
    assert p.offer_grace_period_seconds == 120
    assert p.average_speed_kmh == 20.0
    assert p.minimum_duration_minutes == 5


@pytest.mark.parametrize("field, value", [
    ("stale_presence_seconds", 0),
    ("offer_grace_period_seconds", -1),
    ("average_speed_kmh", 0),
    ("minimum_duration_minutes", -1),
    ("max_claim_attempts", 0),
])
def test_validate_rejects_bad_values(field, value):
    with pytest.raises(ValueError):
        DispatchPolicy(**{field: value}).validate()


def test_policy_from_env_overrides_defaults():
    p = policy_from_env({
        "DISPATCH_OFFER_GRACE_PERIOD_SECONDS": "90",
        "DISPATCH_AVERAGE_SPEED_KMH": "25.5",
        "DISPATCH_STALE_PRESENCE_SECONDS": "",
    })
    assert p.offer_grace_period_seconds == 90
    assert p.average_speed_kmh == 25.5
    # empty values fall back
    assert p.stale_presence_seconds == 120


def test_policy_from_env_rejects_garbage():
    with pytest.raises(ValueError, match="DISPATCH_MAX_CLAIM_ATTEMPTS"):
        policy_from_env({"DISPATCH_MAX_CLAIM_ATTEMPTS": "lots"})


def test_policy_from_env_validates():
    with pytest.raises(ValueError):
        policy_from_env({"DISPATCH_AVERAGE_SPEED_KMH": "0"})
