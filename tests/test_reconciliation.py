"""Tests for reservation checkout and payment reconciliation."""

from decimal import Decimal

import pytest

from raffles import reconciliation
from raffles.exceptions import (
    GatewayError,
    InvalidSelectionError,
    RaffleClosedError,
    RaffleNotFoundError,
    ReservationNotFoundError,
    ValidationError,
)
from raffles.models import (
    ConfirmedEntry,
    EntryNumber,
    PendingReservation,
    Raffle,
    ReconciliationAudit,
)

pytestmark = pytest.mark.django_db


# ---------- initiate ----------

def test_initiate_creates_pending_reservation_and_checkout(engine, gateway, raffle, contact):
    result = engine.initiate("user-a", raffle.pk, [3, 7], contact)

    reservation = PendingReservation.objects.get(external_reference=result.external_reference)
    assert reservation.status == PendingReservation.STATUS_PENDING
    assert reservation.chosen_numbers == [3, 7]
    assert reservation.amount == Decimal("20.00")
    assert reservation.phone == "56912345678"
    assert reservation.preference_id == "pref-1"
    assert result.checkout.redirect_url == "https://pay.example/checkout/1"

    sent = gateway.checkouts[0]
    assert sent["external_reference"] == result.external_reference
    assert sent["amount"] == Decimal("20.00")
    assert sent["notify_url"] == "http://testserver/api/payments/webhook/"
    assert sent["description"] == "Rifa de prueba - 2 número(s)"


def test_initiate_generates_unique_references(reserve):
    assert reserve([1]) != reserve([1])


@pytest.mark.parametrize(
    "numbers",
    [
        [],
        [0],
        [11],
        [3, 3],
        [2, 5, 2],
        ["x"],
        [True],
        [1.5],
        None,
        "3,7",
    ],
)
def test_initiate_rejects_invalid_selection(engine, gateway, raffle, contact, numbers):
    with pytest.raises(InvalidSelectionError):
        engine.initiate("user-a", raffle.pk, numbers, contact)

    assert PendingReservation.objects.count() == 0
    assert gateway.checkouts == []


def test_initiate_validation_errors_are_validation_errors(engine, raffle, contact):
    with pytest.raises(ValidationError):
        engine.initiate("user-a", raffle.pk, [99], contact)


def test_initiate_accepts_range_bounds(engine, raffle, contact):
    result = engine.initiate("user-a", raffle.pk, [10, 1], contact)
    assert result.reservation.chosen_numbers == [10, 1]


def test_initiate_enforces_max_numbers(engine, raffle, contact, settings):
    settings.RAFFLE_MAX_NUMBERS_PER_RESERVATION = 2
    with pytest.raises(InvalidSelectionError):
        engine.initiate("user-a", raffle.pk, [1, 2, 3], contact)


def test_oversized_selection_fails_on_limit_first(engine, raffle, contact):
    # 200 mil números repetidos: se corta por el tope antes de recorrerlos
    with pytest.raises(InvalidSelectionError) as excinfo:
        engine.initiate("user-a", raffle.pk, [1, 2] * 100_000, contact)

    assert "más de 50" in excinfo.value.message
    assert PendingReservation.objects.count() == 0


def test_repeated_numbers_are_listed_once(engine, raffle, contact):
    with pytest.raises(InvalidSelectionError) as excinfo:
        engine.initiate("user-a", raffle.pk, [4, 2, 4, 2, 4], contact)
    assert excinfo.value.message == "Números repetidos: 2, 4"


@pytest.mark.parametrize(
    "bad_contact",
    [
        {"name": "", "phone": "912345678"},
        {"name": "Ana", "phone": "123"},
        None,
        "Ana",
    ],
)
def test_initiate_requires_contact(engine, raffle, bad_contact):
    with pytest.raises(InvalidSelectionError):
        engine.initiate("user-a", raffle.pk, [1], bad_contact)
    assert PendingReservation.objects.count() == 0


def test_initiate_requires_user(engine, raffle, contact):
    with pytest.raises(InvalidSelectionError):
        engine.initiate("", raffle.pk, [1], contact)


def test_initiate_unknown_raffle(engine, contact):
    with pytest.raises(RaffleNotFoundError):
        engine.initiate("user-a", 9999, [1], contact)


def test_initiate_requires_open_raffle(engine, raffle, contact):
    raffle.status = Raffle.STATUS_CLOSED
    raffle.save()

    with pytest.raises(RaffleClosedError):
        engine.initiate("user-a", raffle.pk, [1], contact)
    assert PendingReservation.objects.count() == 0


def test_initiate_gateway_failure_keeps_pending_row(engine, gateway, raffle, contact):
    gateway.fail_checkout = True

    with pytest.raises(GatewayError) as excinfo:
        engine.initiate("user-a", raffle.pk, [4], contact)

    reservation = PendingReservation.objects.get()
    assert reservation.status == PendingReservation.STATUS_PENDING
    assert reservation.preference_id is None
    assert excinfo.value.extra["external_reference"] == reservation.external_reference


def test_initiate_does_not_check_global_availability(reserve, approve):
    ref = reserve([5])
    approve(ref, amount="10.00")

    # Otro usuario puede reservar el mismo número; el conflicto se ve al pagar
    other = reserve([5], user_id="user-b")
    assert PendingReservation.objects.get(external_reference=other).status == "pending"


# ---------- reconcile ----------

def test_approved_payment_confirms_entry(reserve, approve, raffle):
    ref = reserve([3, 7])

    outcome = approve(ref)

    assert outcome.processed
    assert not outcome.duplicate
    reservation = PendingReservation.objects.get(external_reference=ref)
    assert reservation.status == PendingReservation.STATUS_PROCESSED
    assert reservation.payment_provider_id == outcome.entry.payment_provider_id

    entry = ConfirmedEntry.objects.get()
    assert entry == outcome.entry
    assert entry.numbers == [3, 7]
    assert entry.reservation == reservation
    assert entry.amount_paid == Decimal("20.00")
    assert EntryNumber.objects.taken(raffle) == {3, 7}

    audit = ReconciliationAudit.objects.get()
    assert audit.reservation == reservation
    assert audit.observed_status == "approved"
    assert audit.outcome == ReconciliationAudit.OUTCOME_PROCESSED


def test_reconcile_is_idempotent(engine, gateway, reserve):
    ref = reserve([2])
    payment_id = gateway.pay(ref, amount="10.00")

    first = engine.reconcile(payment_id)
    second = engine.reconcile(payment_id)

    assert first.processed
    assert second.duplicate
    assert second.status == PendingReservation.STATUS_PROCESSED
    assert second.entry == first.entry
    assert ConfirmedEntry.objects.count() == 1
    assert EntryNumber.objects.count() == 1

    outcomes = list(ReconciliationAudit.objects.values_list("outcome", flat=True))
    assert outcomes == ["processed", "duplicate"]


def test_rejected_payment_leaves_no_entry(reserve, approve):
    ref = reserve([4, 5])

    outcome = approve(ref, status="rejected")

    assert outcome.status == PendingReservation.STATUS_REJECTED
    reservation = PendingReservation.objects.get(external_reference=ref)
    assert reservation.status == PendingReservation.STATUS_REJECTED
    assert reservation.rejection_reason == PendingReservation.REASON_PROVIDER
    assert ConfirmedEntry.objects.count() == 0
    assert ReconciliationAudit.objects.get().outcome == ReconciliationAudit.OUTCOME_REJECTED


def test_pending_payment_keeps_reservation_pending(engine, gateway, reserve):
    ref = reserve([6])
    payment_id = gateway.pay(ref, status="pending")

    outcome = engine.reconcile(payment_id)

    assert outcome.status == PendingReservation.STATUS_PENDING
    reservation = PendingReservation.objects.get(external_reference=ref)
    assert reservation.status == PendingReservation.STATUS_PENDING
    assert reservation.payment_provider_id == payment_id
    assert ConfirmedEntry.objects.count() == 0

    # Llega la aprobación más tarde
    gateway.pay(ref, status="approved", amount="10.00", payment_id=payment_id)
    assert engine.reconcile(payment_id).processed
    assert list(ReconciliationAudit.objects.values_list("outcome", flat=True)) == ["pending", "processed"]


def test_terminal_reservation_ignores_later_status(engine, gateway, reserve):
    ref = reserve([8])
    payment_id = gateway.pay(ref, status="rejected")
    engine.reconcile(payment_id)

    gateway.pay(ref, status="approved", payment_id=payment_id)
    outcome = engine.reconcile(payment_id)

    assert outcome.duplicate
    assert not outcome.refund_required
    assert outcome.status == PendingReservation.STATUS_REJECTED
    assert ConfirmedEntry.objects.count() == 0


def test_approved_retry_on_rejected_reservation_flags_refund(engine, gateway, reserve, caplog):
    ref = reserve([8])
    engine.reconcile(gateway.pay(ref, status="rejected", payment_id="pay-1"))

    with caplog.at_level("ERROR", logger="raffles.reconciliation"):
        outcome = engine.reconcile(gateway.pay(ref, status="approved", amount="10.00", payment_id="pay-2"))

    assert outcome.refund_required
    assert outcome.status == PendingReservation.STATUS_REJECTED
    assert ConfirmedEntry.objects.count() == 0
    assert "devolución manual" in caplog.text

    audit = ReconciliationAudit.objects.latest("id")
    assert audit.outcome == ReconciliationAudit.OUTCOME_REFUND
    assert audit.provider_payment_id == "pay-2"


def test_second_approved_payment_on_processed_reservation_flags_refund(engine, gateway, reserve, caplog):
    ref = reserve([9])
    first = engine.reconcile(gateway.pay(ref, amount="10.00", payment_id="pay-1"))

    with caplog.at_level("ERROR", logger="raffles.reconciliation"):
        second = engine.reconcile(gateway.pay(ref, amount="10.00", payment_id="pay-2"))

    assert second.refund_required
    assert second.entry == first.entry
    assert ConfirmedEntry.objects.count() == 1
    assert "pay-2" in caplog.text
    outcomes = list(ReconciliationAudit.objects.values_list("outcome", flat=True))
    assert outcomes == ["processed", "refund"]


def test_conflicting_numbers_reject_second_reservation(reserve, approve, raffle):
    ref_a = reserve([3, 7])
    ref_b = reserve([7, 9], user_id="user-b")

    assert approve(ref_a).processed
    outcome_b = approve(ref_b)

    assert outcome_b.status == PendingReservation.STATUS_REJECTED
    assert outcome_b.conflict_numbers == [7]

    reservation_b = PendingReservation.objects.get(external_reference=ref_b)
    assert reservation_b.rejection_reason == PendingReservation.REASON_CONFLICT
    assert reservation_b.conflict_numbers == [7]
    assert ConfirmedEntry.objects.count() == 1
    assert EntryNumber.objects.taken(raffle) == {3, 7}

    audit = ReconciliationAudit.objects.get(reservation=reservation_b)
    assert audit.outcome == ReconciliationAudit.OUTCOME_CONFLICT
    assert "NumberConflictError" in audit.detail


def test_unique_constraint_backstop_catches_lost_race(monkeypatch, reserve, approve, raffle):
    ref_a = reserve([3, 7])
    ref_b = reserve([7, 9], user_id="user-b")
    assert approve(ref_a).processed

    # Simula que el control previo no vio la confirmación de la otra instancia
    monkeypatch.setattr(reconciliation, "find_conflicts", lambda raffle, numbers: set())
    outcome_b = approve(ref_b)

    assert outcome_b.status == PendingReservation.STATUS_REJECTED
    assert outcome_b.conflict_numbers == [7]
    assert ConfirmedEntry.objects.count() == 1
    assert EntryNumber.objects.filter(raffle=raffle, number=9).count() == 0


def test_overlapping_reservations_never_both_processed(reserve, approve, raffle):
    refs = [reserve([5, n], user_id=f"user-{n}") for n in (1, 2, 3, 4)]

    outcomes = [approve(ref) for ref in refs]

    assert sum(o.processed for o in outcomes) == 1
    numbers = list(EntryNumber.objects.filter(raffle=raffle).values_list("number", flat=True))
    assert len(numbers) == len(set(numbers))


def test_same_numbers_in_other_raffle_do_not_conflict(reserve, approve, raffle):
    other = Raffle.objects.create(title="Otra", min_number=1, max_number=10, unit_price=Decimal("5"))
    assert approve(reserve([1])).processed
    assert approve(reserve([1], target=other)).processed


def test_unknown_reference_is_audited_and_raised(engine, gateway):
    payment_id = gateway.pay("no-such-reference")

    with pytest.raises(ReservationNotFoundError):
        engine.reconcile(payment_id)

    audit = ReconciliationAudit.objects.get()
    assert audit.reservation is None
    assert audit.outcome == ReconciliationAudit.OUTCOME_NOT_FOUND
    assert audit.external_reference == "no-such-reference"


def test_gateway_error_touches_nothing(engine, gateway, reserve):
    ref = reserve([1])
    payment_id = gateway.pay(ref)
    gateway.fail_status = True

    with pytest.raises(GatewayError):
        engine.reconcile(payment_id)

    assert PendingReservation.objects.get(external_reference=ref).status == "pending"
    assert ReconciliationAudit.objects.count() == 0
    assert ConfirmedEntry.objects.count() == 0


def test_amount_mismatch_is_logged(reserve, approve, caplog):
    ref = reserve([1, 2])

    with caplog.at_level("WARNING", logger="raffles.reconciliation"):
        outcome = approve(ref, amount="5.00")

    assert outcome.processed
    assert "distinto al esperado" in caplog.text


def test_reconcile_reservation_requires_payment_id(engine, reserve):
    reservation = PendingReservation.objects.get(external_reference=reserve([1]))
    with pytest.raises(ValidationError):
        engine.reconcile_reservation(reservation)


def test_reconcile_reservation_redrives_known_payment(engine, gateway, reserve):
    ref = reserve([1])
    payment_id = gateway.pay(ref, status="pending")
    engine.reconcile(payment_id)

    gateway.pay(ref, status="approved", amount="10.00", payment_id=payment_id)
    reservation = PendingReservation.objects.get(external_reference=ref)
    assert engine.reconcile_reservation(reservation).processed


def test_audit_records_are_append_only(reserve, approve):
    approve(reserve([1]))
    audit = ReconciliationAudit.objects.get()
    audit.detail = "editado"
    with pytest.raises(ValueError):
        audit.save()
