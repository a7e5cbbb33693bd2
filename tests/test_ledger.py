import pytest

from fundledger.clock import ManualClock
from fundledger.ledger import (
    AlreadySettled,
    CampaignLedger,
    DeadlinePassed,
    GoalNotReached,
    GoalReached,
    InvalidParameters,
    NoEligibleAction,
    NotFound,
    NotOpen,
    NotSettlementEligible,
    PayoutGateway,
    SelfContributionForbidden,
    Unauthorized,
)

DAY = 86_400


class RecordingGateway(PayoutGateway):
    def __init__(self):
        self.sent = []

    def transfer(self, recipient, amount, reference):
        self.sent.append((recipient, amount, reference))


def _make_ledger():
    clock = ManualClock(start=1_700_000_000)
    gateway = RecordingGateway()
    ledger = CampaignLedger("admin", clock=clock, gateway=gateway)
    return ledger, clock, gateway


def _assert_balanced(ledger, cid):
    contributors = ledger.get_contributors(cid)
    total = sum(ledger.get_contribution(cid, who) for who in contributors)
    assert ledger.get_campaign(cid).raised_amount == total


def test_create_assigns_increasing_ids_and_deadline():
    ledger, clock, _ = _make_ledger()
    a = ledger.create_campaign("alice", "Garden", "beds", 100, 1)
    b = ledger.create_campaign("bob", "Film", "", 50, 3)
    assert (a, b) == (1, 2)
    assert ledger.get_campaign(a).deadline == clock.now() + DAY
    assert ledger.get_campaign(b).deadline == clock.now() + 3 * DAY
    assert ledger.campaign_count() == 2
    assert ledger.get_creator_campaigns("alice") == [1]
    assert ledger.get_creator_campaigns("nobody") == []


@pytest.mark.parametrize(
    "title,goal,days",
    [("", 100, 1), ("   ", 100, 1), ("t", 0, 1), ("t", -5, 1), ("t", 100, 0), ("t", 1.5, 1), ("t", True, 1)],
)
def test_create_rejects_invalid_parameters(title, goal, days):
    ledger, _, _ = _make_ledger()
    with pytest.raises(InvalidParameters):
        ledger.create_campaign("alice", title, "", goal, days)
    assert ledger.campaign_count() == 0


def test_scenario_goal_reached_withdrawal():
    ledger, _, gateway = _make_ledger()
    cid = ledger.create_campaign("creator", "Goal", "", 100, 1)
    ledger.contribute(cid, "A", 40)
    ledger.contribute(cid, "B", 70)
    summary = ledger.get_campaign(cid)
    assert summary.raised_amount == 110
    assert summary.goal_reached is True
    assert summary.contributor_count == 2

    t = ledger.settle(cid, "creator")
    assert t.kind == "withdrawal" and t.amount == 110 and t.status == "completed"
    assert [(r, a) for r, a, _ in gateway.sent] == [("creator", 110)]

    with pytest.raises(AlreadySettled):
        ledger.settle(cid, "creator")
    assert len(gateway.sent) == 1

    after = ledger.get_campaign(cid)
    assert after.raised_amount == 0
    assert after.withdrawn is True and after.withdrawn_amount == 110
    assert after.status == "settled"
    assert ledger.get_contribution(cid, "A") == 0
    _assert_balanced(ledger, cid)


def test_scenario_goal_missed_refund():
    ledger, clock, gateway = _make_ledger()
    cid = ledger.create_campaign("creator", "Missed", "", 100, 1)
    ledger.contribute(cid, "A", 30)
    clock.advance(DAY + 1)
    assert ledger.get_campaign(cid).goal_reached is False

    t = ledger.settle(cid, "A")
    assert t.kind == "refund" and t.recipient == "A" and t.amount == 30
    assert ledger.get_contribution(cid, "A") == 0
    with pytest.raises(GoalNotReached):
        ledger.settle(cid, "creator")
    assert [(r, a) for r, a, _ in gateway.sent] == [("A", 30)]
    assert ledger.get_campaign(cid).status == "settled"


def test_scenario_contribution_rejections():
    ledger, clock, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "Rules", "", 100, 1)
    with pytest.raises(InvalidParameters):
        ledger.contribute(cid, "A", 0)
    with pytest.raises(SelfContributionForbidden):
        ledger.contribute(cid, "creator", 10)
    clock.advance(DAY)
    with pytest.raises(DeadlinePassed):
        ledger.contribute(cid, "A", 10)
    summary = ledger.get_campaign(cid)
    assert summary.raised_amount == 0 and summary.contributor_count == 0


def test_scenario_emergency_stop():
    ledger, _, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "Stop", "", 100, 1)
    ledger.contribute(cid, "A", 20)
    with pytest.raises(Unauthorized):
        ledger.emergency_stop(cid, "creator")
    ledger.emergency_stop(cid, "admin")
    assert ledger.get_campaign(cid).status == "ceased"
    with pytest.raises(NotOpen):
        ledger.contribute(cid, "A", 5)
    with pytest.raises(NotOpen):
        ledger.emergency_stop(cid, "admin")


def test_scenario_settle_too_early():
    ledger, _, gateway = _make_ledger()
    cid = ledger.create_campaign("creator", "Early", "", 100, 1)
    ledger.contribute(cid, "A", 99)
    with pytest.raises(NotSettlementEligible):
        ledger.settle(cid, "creator")
    with pytest.raises(NotSettlementEligible):
        ledger.settle(cid, "A")
    assert gateway.sent == []


def test_stop_refunds_contributors_and_blocks_creator():
    ledger, _, gateway = _make_ledger()
    cid = ledger.create_campaign("creator", "Stop", "", 100, 5)
    ledger.contribute(cid, "A", 80)
    ledger.contribute(cid, "B", 40)
    ledger.emergency_stop(cid, "admin")
    with pytest.raises(NotOpen):
        ledger.settle(cid, "creator")
    # goal was met before the stop, but the stop makes it unreachable
    assert ledger.settle(cid, "A").amount == 80
    assert ledger.settle(cid, "B").amount == 40
    assert "admin" not in [r for r, _, _ in gateway.sent]
    summary = ledger.get_campaign(cid)
    assert summary.raised_amount == 0 and summary.status == "ceased"


def test_double_refund_fails():
    ledger, clock, gateway = _make_ledger()
    cid = ledger.create_campaign("creator", "Twice", "", 100, 1)
    ledger.contribute(cid, "A", 10)
    ledger.contribute(cid, "B", 10)
    clock.advance(DAY)
    ledger.settle(cid, "A")
    with pytest.raises(AlreadySettled):
        ledger.settle(cid, "A")
    assert len(gateway.sent) == 1
    _assert_balanced(ledger, cid)


def test_refund_rejected_when_goal_reached():
    ledger, clock, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "Met", "", 50, 1)
    ledger.contribute(cid, "A", 60)
    with pytest.raises(GoalReached):
        ledger.settle(cid, "A")
    clock.advance(2 * DAY)
    with pytest.raises(GoalReached):
        ledger.settle(cid, "A")


def test_absorbed_stake_has_no_claim_after_withdrawal():
    ledger, _, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "Absorb", "", 50, 1)
    ledger.contribute(cid, "A", 60)
    ledger.settle(cid, "creator")
    with pytest.raises(NoEligibleAction):
        ledger.settle(cid, "A")


def test_stranger_has_no_eligible_action():
    ledger, clock, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "S", "", 50, 1)
    ledger.contribute(cid, "A", 10)
    clock.advance(DAY)
    with pytest.raises(NoEligibleAction):
        ledger.settle(cid, "stranger")


def test_creator_with_nothing_raised_has_no_action():
    ledger, clock, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "Empty", "", 50, 1)
    clock.advance(DAY)
    with pytest.raises(GoalNotReached):
        ledger.settle(cid, "creator")


def test_contributions_accepted_after_goal_until_deadline():
    ledger, _, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "Over", "", 50, 1)
    ledger.contribute(cid, "A", 50)
    assert ledger.get_campaign(cid).goal_reached
    assert ledger.contribute(cid, "A", 25) == 75
    ledger.contribute(cid, "B", 5)
    assert ledger.get_contributors(cid) == ["A", "B"]
    assert ledger.get_campaign(cid).raised_amount == 80
    _assert_balanced(ledger, cid)


def test_unknown_campaign_not_found():
    ledger, _, _ = _make_ledger()
    with pytest.raises(NotFound):
        ledger.contribute(42, "A", 1)
    with pytest.raises(NotFound):
        ledger.settle(42, "A")
    with pytest.raises(NotFound):
        ledger.get_campaign(42)
    with pytest.raises(NotFound):
        ledger.emergency_stop(42, "admin")


def test_queries_are_idempotent():
    ledger, _, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "Q", "", 100, 1)
    ledger.contribute(cid, "A", 10)
    first = (ledger.get_campaign(cid), ledger.get_contributors(cid), ledger.get_contribution(cid, "A"))
    second = (ledger.get_campaign(cid), ledger.get_contributors(cid), ledger.get_contribution(cid, "A"))
    assert first == second
    assert ledger.get_contribution(cid, "never") == 0


def test_balance_invariant_over_mixed_sequence():
    ledger, clock, _ = _make_ledger()
    funded = ledger.create_campaign("c1", "Funded", "", 100, 2)
    missed = ledger.create_campaign("c2", "Missed", "", 1_000, 1)
    steps = [
        (funded, "A", 30), (missed, "A", 5), (funded, "B", 50),
        (missed, "C", 7), (funded, "A", 25), (missed, "C", 3),
    ]
    for cid, who, amount in steps:
        ledger.contribute(cid, who, amount)
        _assert_balanced(ledger, cid)
    clock.advance(DAY)
    for who in ledger.get_contributors(missed):
        ledger.settle(missed, who)
        _assert_balanced(ledger, missed)
    ledger.settle(funded, "c1")
    _assert_balanced(ledger, funded)
    assert ledger.get_campaign(missed).raised_amount == 0


def _state(ledger, cid, events):
    stakes = {who: ledger.get_contribution(cid, who) for who in ledger.get_contributors(cid)}
    return ledger.get_campaign(cid), stakes, len(events)


def test_non_string_identity_rejected_without_side_effects():
    events = []
    ledger = CampaignLedger("admin", clock=ManualClock(), gateway=RecordingGateway(), sinks=[events.append])
    cid = ledger.create_campaign("creator", "Typed", "", 100, 1)
    before = _state(ledger, cid, events)

    for bad in (7, None, ""):
        with pytest.raises(InvalidParameters):
            ledger.contribute(cid, bad, 10)
    assert _state(ledger, cid, events) == before
    assert ledger.get_contributors(cid) == []

    with pytest.raises(InvalidParameters):
        ledger.settle(cid, 7)
    assert _state(ledger, cid, events) == before


@pytest.mark.parametrize(
    "creator,title,description",
    [(123, "t", ""), (None, "t", ""), ("creator", 123, ""), ("creator", None, ""), ("creator", "t", 5)],
)
def test_create_rejects_non_string_fields(creator, title, description):
    events = []
    ledger = CampaignLedger("admin", clock=ManualClock(), sinks=[events.append])
    with pytest.raises(InvalidParameters):
        ledger.create_campaign(creator, title, description, 100, 1)
    assert ledger.campaign_count() == 0
    assert events == []
    # the id was not consumed
    assert ledger.create_campaign("creator", "First", "", 100, 1) == 1


def test_rejected_settle_and_stop_leave_state_unchanged():
    events = []
    gateway = RecordingGateway()
    ledger = CampaignLedger("admin", clock=ManualClock(), gateway=gateway, sinks=[events.append])
    cid = ledger.create_campaign("creator", "Steady", "", 100, 1)
    ledger.contribute(cid, "A", 40)

    before = _state(ledger, cid, events)
    with pytest.raises(NotSettlementEligible):
        ledger.settle(cid, "A")
    assert _state(ledger, cid, events) == before

    ledger.contribute(cid, "B", 70)
    before = _state(ledger, cid, events)
    with pytest.raises(GoalReached):
        ledger.settle(cid, "A")
    assert _state(ledger, cid, events) == before
    with pytest.raises(NoEligibleAction):
        ledger.settle(cid, "stranger")
    assert _state(ledger, cid, events) == before
    with pytest.raises(Unauthorized):
        ledger.emergency_stop(cid, "A")
    assert _state(ledger, cid, events) == before
    assert gateway.sent == []

    ledger.settle(cid, "creator")
    before = _state(ledger, cid, events)
    with pytest.raises(NotOpen):
        ledger.emergency_stop(cid, "admin")
    assert _state(ledger, cid, events) == before


def test_contribute_to_settled_campaign_not_open():
    ledger, _, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "Done", "", 10, 1)
    ledger.contribute(cid, "A", 10)
    ledger.settle(cid, "creator")
    assert ledger.get_campaign(cid).status == "settled"
    with pytest.raises(NotOpen):
        ledger.contribute(cid, "B", 5)
    assert ledger.get_contributors(cid) == ["A"]


def test_repeat_contributor_listed_once():
    ledger, _, _ = _make_ledger()
    cid = ledger.create_campaign("creator", "Repeat", "", 1_000, 1)
    for who in ("A", "B", "A", "C", "B", "A"):
        ledger.contribute(cid, who, 5)
    assert ledger.get_contributors(cid) == ["A", "B", "C"]
    assert ledger.get_contribution(cid, "A") == 15
    _assert_balanced(ledger, cid)
