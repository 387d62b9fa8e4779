import pytest
from datetime import date
from uuid import uuid4

from sqlmodel import select

from kleanr.models.job_assignment import JobAssignmentStatus
from kleanr.models.pending_payout import (
    PayoutFilter,
    PayoutPriority,
    PayoutStatus,
    PendingPayout,
    TransitionMetadata,
)
from kleanr.services.config_store_service import publish_tier_config
from kleanr.services.payout_ledger_service import PayoutLedgerService, PayoutStateMachine
from kleanr.services.preferred_relationship_service import (
    add_preferred_relationship,
    remove_preferred_relationship,
)
from kleanr.services.tier_service import DEFAULT_TIER_THRESHOLDS, TierService

from conftest import EARNED_AT, OWNER_ID


def _make_gold(session, worker_id, location_id):
    """Deja al trabajador en gold, preferido en `location_id`"""
    add_preferred_relationship(session, worker_id, location_id)
    others = [uuid4() for _ in range(5)]
    for other in others:
        add_preferred_relationship(session, worker_id, other)
    return others


def _count_payouts(session, assignment_id):
    return len(session.exec(
        select(PendingPayout).where(PendingPayout.assignment_id == assignment_id)).all())


def test_state_machine_transition_table():
    assert PayoutStateMachine.get_allowed_transitions(PayoutStatus.PENDING) == {
        PayoutStatus.PROCESSING, PayoutStatus.CANCELLED}
    assert PayoutStateMachine.get_allowed_transitions(PayoutStatus.PROCESSING) == {
        PayoutStatus.COMPLETED, PayoutStatus.FAILED}
    for terminal in (PayoutStatus.COMPLETED, PayoutStatus.FAILED, PayoutStatus.CANCELLED):
        assert PayoutStateMachine.is_terminal(terminal)
        assert PayoutStateMachine.get_allowed_transitions(terminal) == set()
    assert not PayoutStateMachine.can_transition(PayoutStatus.PROCESSING, PayoutStatus.CANCELLED)


def test_create_pending_payout_for_bronze_worker(seeded_session, make_assignment):
    assignment = make_assignment()

    result = PayoutLedgerService(seeded_session).create_pending_payout(
        assignment, earned_at=EARNED_AT)

    assert result.created is True
    payout = result.payout
    assert payout.amount == 4000
    assert payout.pay_type == "hourly"
    assert payout.hours_worked == 2.0
    assert payout.status == PayoutStatus.PENDING
    assert payout.payout_priority == PayoutPriority.NORMAL
    assert payout.expected_payout_hours == 48
    assert payout.cleaner_tier_at_payout == "bronze"
    assert payout.preferred_bonus_applied is False
    assert payout.scheduled_payout_date == date(2024, 1, 19)
    assert payout.owner_id == OWNER_ID


def test_gold_worker_gets_bonus_and_priority(seeded_session, make_assignment):
    worker_id, location_id = uuid4(), uuid4()
    _make_gold(seeded_session, worker_id, location_id)
    assignment = make_assignment(worker_id=worker_id, location_id=location_id)

    payout = PayoutLedgerService(seeded_session).create_pending_payout(
        assignment, earned_at=EARNED_AT).payout

    assert payout.cleaner_tier_at_payout == "gold"
    assert payout.preferred_bonus_applied is True
    assert payout.preferred_bonus_percent == 5
    assert payout.preferred_bonus_amount == 75
    assert payout.amount == 4075
    assert payout.payout_priority == PayoutPriority.HIGH
    assert payout.expected_payout_hours == 24
    assert payout.scheduled_payout_date == date(2024, 1, 9)


def test_gold_worker_outside_preferred_home_gets_no_bonus(seeded_session, make_assignment):
    worker_id = uuid4()
    _make_gold(seeded_session, worker_id, uuid4())
    assignment = make_assignment(worker_id=worker_id)

    payout = PayoutLedgerService(seeded_session).create_pending_payout(
        assignment, earned_at=EARNED_AT).payout

    assert payout.preferred_bonus_applied is False
    assert payout.preferred_bonus_amount == 0
    assert payout.amount == 4000
    assert payout.payout_priority == PayoutPriority.HIGH


def test_disabled_faster_payouts_use_default_hours(session, make_assignment):
    config = [t.model_copy() for t in DEFAULT_TIER_THRESHOLDS]
    config[2] = config[2].model_copy(update={"faster_payouts": False})
    publish_tier_config(session, config)
    worker_id = uuid4()
    TierService(session).recalculate_tier(worker_id, preferred_count=6)

    payout = PayoutLedgerService(session).create_pending_payout(
        make_assignment(worker_id=worker_id), earned_at=EARNED_AT).payout

    assert payout.cleaner_tier_at_payout == "gold"
    assert payout.payout_priority == PayoutPriority.NORMAL
    assert payout.expected_payout_hours == 48


def test_missing_tier_config_uses_zero_perks(session, make_assignment):
    payout = PayoutLedgerService(session).create_pending_payout(
        make_assignment(), earned_at=EARNED_AT).payout

    assert payout.cleaner_tier_at_payout == "bronze"
    assert payout.preferred_bonus_amount == 0
    assert payout.expected_payout_hours == 48


def test_explicit_amount_overrides_split(seeded_session, make_assignment):
    payout = PayoutLedgerService(seeded_session).create_pending_payout(
        make_assignment(), amount=5000, earned_at=EARNED_AT).payout
    assert payout.amount == 5000


@pytest.mark.parametrize("overrides", [
    {"status": JobAssignmentStatus.ASSIGNED},
    {"worker_id": None},
    {"is_self_assignment": True},
    {"pay_type": "weekly"},
])
def test_invalid_assignments_create_nothing(seeded_session, make_assignment, overrides):
    assignment = make_assignment(**overrides)

    result = PayoutLedgerService(seeded_session).create_pending_payout(assignment)

    assert result.created is False
    assert result.error_code == "INPUT_VALIDATION"
    assert _count_payouts(seeded_session, assignment.id) == 0


def test_second_completion_report_returns_existing(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    assignment = make_assignment()

    first = ledger.create_pending_payout(assignment, earned_at=EARNED_AT)
    second = ledger.create_pending_payout(assignment, earned_at=EARNED_AT)

    assert first.created is True
    assert second.created is False
    assert second.error_code == "DUPLICATE_PAYOUT"
    assert second.payout.id == first.payout.id
    assert _count_payouts(seeded_session, assignment.id) == 1


def test_concurrent_completion_reports_create_one_payout(
        seeded_session, other_session, make_assignment, monkeypatch):
    """Dos reportes simultáneos: el segundo choca con la restricción única"""
    assignment = make_assignment()
    ledger_a = PayoutLedgerService(seeded_session)
    ledger_b = PayoutLedgerService(other_session)

    # El segundo proceso leyó antes de que el primero guardara
    real_lookup = ledger_b.get_payout_by_assignment
    lookups = []

    def stale_lookup(assignment_id):
        lookups.append(assignment_id)
        if len(lookups) == 1:
            return None
        return real_lookup(assignment_id)

    monkeypatch.setattr(ledger_b, "get_payout_by_assignment", stale_lookup)

    first = ledger_a.create_pending_payout(assignment, earned_at=EARNED_AT)
    second = ledger_b.create_pending_payout(assignment, earned_at=EARNED_AT)

    assert first.created is True
    assert second.created is False
    assert second.error_code == "DUPLICATE_PAYOUT"
    assert second.payout.id == first.payout.id
    assert len(lookups) == 2
    assert _count_payouts(other_session, assignment.id) == 1


def _pending_payout(session, make_assignment, **overrides):
    return PayoutLedgerService(session).create_pending_payout(
        make_assignment(**overrides), earned_at=EARNED_AT).payout


def test_happy_path_to_completed(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    payout = _pending_payout(seeded_session, make_assignment)

    processing = ledger.transition_payout(
        payout.id, PayoutStatus.PENDING, PayoutStatus.PROCESSING)
    completed = ledger.transition_payout(
        payout.id, PayoutStatus.PROCESSING, PayoutStatus.COMPLETED,
        TransitionMetadata(transfer_id="tr_123"))

    assert processing.success is True
    assert completed.success is True
    assert completed.payout.status == PayoutStatus.COMPLETED
    assert completed.payout.transfer_id == "tr_123"
    assert completed.payout.paid_at is not None


def test_completion_requires_transfer_reference(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    payout = _pending_payout(seeded_session, make_assignment)
    ledger.transition_payout(payout.id, PayoutStatus.PENDING, PayoutStatus.PROCESSING)

    result = ledger.transition_payout(
        payout.id, PayoutStatus.PROCESSING, PayoutStatus.COMPLETED)

    assert result.success is False
    assert result.error_code == "INPUT_VALIDATION"
    assert ledger.get_payout(payout.id).status == PayoutStatus.PROCESSING


def test_failure_requires_reason_and_is_terminal(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    payout = _pending_payout(seeded_session, make_assignment)
    ledger.transition_payout(payout.id, PayoutStatus.PENDING, PayoutStatus.PROCESSING)

    missing = ledger.transition_payout(
        payout.id, PayoutStatus.PROCESSING, PayoutStatus.FAILED)
    failed = ledger.transition_payout(
        payout.id, PayoutStatus.PROCESSING, PayoutStatus.FAILED,
        TransitionMetadata(failure_reason="Account not onboarded"))
    retry = ledger.transition_payout(
        payout.id, PayoutStatus.FAILED, PayoutStatus.PROCESSING)

    assert missing.error_code == "INPUT_VALIDATION"
    assert failed.success is True
    assert failed.payout.failure_reason == "Account not onboarded"
    assert retry.error_code == "ILLEGAL_TRANSITION"


@pytest.mark.parametrize("from_state,to_state", [
    (PayoutStatus.PENDING, PayoutStatus.COMPLETED),
    (PayoutStatus.PENDING, PayoutStatus.FAILED),
    (PayoutStatus.PROCESSING, PayoutStatus.CANCELLED),
    (PayoutStatus.PROCESSING, PayoutStatus.PENDING),
    (PayoutStatus.COMPLETED, PayoutStatus.PENDING),
    (PayoutStatus.CANCELLED, PayoutStatus.PROCESSING),
])
def test_illegal_transitions_are_rejected(seeded_session, make_assignment, from_state, to_state):
    payout = _pending_payout(seeded_session, make_assignment)

    result = PayoutLedgerService(seeded_session).transition_payout(
        payout.id, from_state, to_state,
        TransitionMetadata(transfer_id="tr_1", failure_reason="x", reason="x"))

    assert result.success is False
    assert result.error_code == "ILLEGAL_TRANSITION"
    assert PayoutLedgerService(seeded_session).get_payout(payout.id).status == PayoutStatus.PENDING


def test_cancel_requires_reason(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    payout = _pending_payout(seeded_session, make_assignment)

    missing = ledger.transition_payout(payout.id, PayoutStatus.PENDING, PayoutStatus.CANCELLED)
    cancelled = ledger.transition_payout(
        payout.id, PayoutStatus.PENDING, PayoutStatus.CANCELLED,
        TransitionMetadata(reason="Job voided by owner"))

    assert missing.error_code == "INPUT_VALIDATION"
    assert cancelled.success is True
    assert cancelled.payout.failure_reason == "Job voided by owner"


def test_cancel_by_assignment(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    assignment = make_assignment()
    ledger.create_pending_payout(assignment, earned_at=EARNED_AT)

    result = ledger.cancel_pending_payout_for_assignment(assignment.id, "Appointment cancelled")
    missing = ledger.cancel_pending_payout_for_assignment(uuid4(), "Appointment cancelled")

    assert result.success is True
    assert result.payout.status == PayoutStatus.CANCELLED
    assert missing.error_code == "PAYOUT_NOT_FOUND"


def test_concurrent_transition_is_a_conflict(seeded_session, other_session, make_assignment):
    payout = _pending_payout(seeded_session, make_assignment)
    ledger_a = PayoutLedgerService(seeded_session)
    ledger_b = PayoutLedgerService(other_session)
    assert ledger_b.get_payout(payout.id).status == PayoutStatus.PENDING

    won = ledger_a.transition_payout(payout.id, PayoutStatus.PENDING, PayoutStatus.PROCESSING)
    lost = ledger_b.transition_payout(payout.id, PayoutStatus.PENDING, PayoutStatus.PROCESSING)

    assert won.success is True
    assert lost.success is False
    assert lost.error_code == "CONCURRENCY_CONFLICT"
    assert lost.current_status == PayoutStatus.PROCESSING


def test_unknown_payout(seeded_session):
    result = PayoutLedgerService(seeded_session).transition_payout(
        uuid4(), PayoutStatus.PENDING, PayoutStatus.PROCESSING)
    assert result.error_code == "PAYOUT_NOT_FOUND"


def test_downgrade_keeps_historical_snapshot(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    worker_id, location_id = uuid4(), uuid4()
    others = _make_gold(seeded_session, worker_id, location_id)

    gold_payout = ledger.create_pending_payout(
        make_assignment(worker_id=worker_id, location_id=location_id), earned_at=EARNED_AT).payout
    for other in others:
        remove_preferred_relationship(seeded_session, worker_id, other)
    bronze_payout = ledger.create_pending_payout(
        make_assignment(worker_id=worker_id, location_id=location_id), earned_at=EARNED_AT).payout

    assert ledger.get_payout(gold_payout.id).cleaner_tier_at_payout == "gold"
    assert ledger.get_payout(gold_payout.id).preferred_bonus_amount == 75
    assert bronze_payout.cleaner_tier_at_payout == "bronze"
    assert bronze_payout.preferred_bonus_amount == 0


def test_pending_totals_and_due_queries(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    worker_a, worker_b = uuid4(), uuid4()
    other_owner = uuid4()
    a1 = _pending_payout(seeded_session, make_assignment, worker_id=worker_a)
    _pending_payout(seeded_session, make_assignment, worker_id=worker_a, pay_type="flat_rate", rate_value=6000)
    b1 = _pending_payout(seeded_session, make_assignment, worker_id=worker_b, owner_id=other_owner)
    ledger.transition_payout(b1.id, PayoutStatus.PENDING, PayoutStatus.CANCELLED,
                             TransitionMetadata(reason="voided"))

    totals_a = ledger.get_pending_totals(worker_id=worker_a)
    assert (totals_a.total_amount, totals_a.payout_count) == (10000, 2)
    totals_owner = ledger.get_pending_totals(owner_id=OWNER_ID)
    assert (totals_owner.total_amount, totals_owner.payout_count) == (10000, 2)
    assert ledger.get_pending_totals(owner_id=other_owner).payout_count == 0

    assert ledger.get_due_payouts(date(2024, 1, 18)) == []
    assert {p.id for p in ledger.get_due_payouts(date(2024, 1, 19))} == {
        p.id for p in ledger.query_pending_payouts(PayoutFilter(worker_id=worker_a))}

    everything = ledger.query_pending_payouts()
    assert len(everything) == 3
    cancelled = ledger.query_pending_payouts(PayoutFilter(statuses=[PayoutStatus.CANCELLED]))
    assert [p.id for p in cancelled] == [b1.id]
    page = ledger.query_pending_payouts(PayoutFilter(worker_id=worker_a, offset=1, limit=1))
    assert len(page) == 1
    assert ledger.get_payout_by_assignment(a1.assignment_id).id == a1.id


def test_pending_summaries(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    worker_a, worker_b = uuid4(), uuid4()
    _pending_payout(seeded_session, make_assignment, worker_id=worker_a)
    _pending_payout(seeded_session, make_assignment, worker_id=worker_a)
    _pending_payout(seeded_session, make_assignment, worker_id=worker_b)

    earnings = ledger.get_pending_earnings_for_worker(worker_a, today=date(2024, 1, 8))
    assert earnings.total_pending == 8000
    assert earnings.job_count == 2
    assert earnings.next_payout_date == date(2024, 1, 19)

    payroll = ledger.get_pending_payroll_for_owner(OWNER_ID, today=date(2024, 1, 8))
    assert payroll.total_amount == 12000
    assert payroll.payout_count == 3
    by_worker = {g.worker_id: (g.total_amount, g.payout_count) for g in payroll.by_worker}
    assert by_worker == {worker_a: (8000, 2), worker_b: (4000, 1)}


def test_new_tier_config_applies_to_next_payout(seeded_session, make_assignment):
    """Un cambio de configuración del operador aplica al siguiente pago"""
    worker_id, location_id = uuid4(), uuid4()
    _make_gold(seeded_session, worker_id, location_id)
    config = [t.model_copy() for t in DEFAULT_TIER_THRESHOLDS]
    config[2] = config[2].model_copy(update={"bonus_percent": 0, "faster_payouts": False})
    publish_tier_config(seeded_session, config, note="Gold without perks")

    payout = PayoutLedgerService(seeded_session).create_pending_payout(
        make_assignment(worker_id=worker_id, location_id=location_id),
        earned_at=EARNED_AT).payout

    assert payout.cleaner_tier_at_payout == "gold"
    assert payout.payout_priority == PayoutPriority.NORMAL
    assert payout.expected_payout_hours == 48
    assert payout.preferred_bonus_amount == 0
    assert payout.amount == 4000
    status = TierService(seeded_session).get_tier_status(worker_id)
    assert status.config_version == 2
    assert status.faster_payouts is False


def test_plain_string_states_are_accepted(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    payout = _pending_payout(seeded_session, make_assignment)

    result = ledger.transition_payout(payout.id, "pending", "processing")

    assert result.success is True
    assert result.current_status == PayoutStatus.PROCESSING


def test_unknown_state_is_rejected_without_changes(seeded_session, make_assignment):
    ledger = PayoutLedgerService(seeded_session)
    payout = _pending_payout(seeded_session, make_assignment)

    result = ledger.transition_payout(payout.id, "pending", "paid")

    assert result.success is False
    assert result.error_code == "INPUT_VALIDATION"
    assert ledger.get_payout(payout.id).status == PayoutStatus.PENDING
