"""
Reserva de números y conciliación de pagos.

Flujo:
  1. `initiate` valida la selección, guarda una PendingReservation 'pending'
     y pide a la pasarela un enlace de pago marcado con external_reference.
  2. La pasarela avisa por webhook con el id de pago. `reconcile` consulta el
     estado real del pago, busca la reserva y la pasa a 'processed' (creando
     la ConfirmedEntry y sus EntryNumber) o a 'rejected'.

La disponibilidad global NO se revisa al reservar: el pago puede tardar lo
que sea, así que el control vale recién al confirmar, bajo bloqueo de fila
y con la restricción única (raffle, number) como respaldo.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Optional
from uuid import uuid4

from django.conf import settings
from django.db import transaction, IntegrityError
from django.urls import reverse

from . import gateways
from .availability import get_raffle
from .exceptions import (
    GatewayError,
    InvalidSelectionError,
    NumberConflictError,
    RaffleClosedError,
    ReservationNotFoundError,
    ValidationError,
)
from .models import (
    Raffle,
    PendingReservation,
    ConfirmedEntry,
    EntryNumber,
    ReconciliationAudit,
)

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 8


@dataclass(frozen=True)
class CheckoutResult:
    reservation: PendingReservation
    checkout: gateways.CheckoutHandle

    @property
    def external_reference(self):
        return self.reservation.external_reference


@dataclass(frozen=True)
class ReconciliationOutcome:
    reservation: PendingReservation
    status: str
    observed_status: str
    entry: Optional[ConfirmedEntry] = None
    conflict_numbers: list = field(default_factory=list)
    duplicate: bool = False
    refund_required: bool = False

    @property
    def processed(self):
        return self.status == PendingReservation.STATUS_PROCESSED


# ========= Validaciones =========

def validate_selection(raffle: Raffle, chosen_numbers) -> list[int]:
    if not isinstance(chosen_numbers, (list, tuple)) or not chosen_numbers:
        raise InvalidSelectionError("Debes seleccionar al menos un número")

    # Tope antes de recorrer la lista
    limit = settings.RAFFLE_MAX_NUMBERS_PER_RESERVATION
    if len(chosen_numbers) > limit:
        raise InvalidSelectionError(f"No puedes reservar más de {limit} números a la vez")

    numbers = []
    seen, repeated = set(), set()
    for raw in chosen_numbers:
        if isinstance(raw, bool):
            raise InvalidSelectionError(f"Número inválido: {raw!r}")
        try:
            n = int(raw)
        except (TypeError, ValueError):
            raise InvalidSelectionError(f"Número inválido: {raw!r}")
        if isinstance(raw, float) and raw != n:
            raise InvalidSelectionError(f"Número inválido: {raw!r}")
        if n < raffle.min_number or n > raffle.max_number:
            raise InvalidSelectionError(f"Número fuera de rango: {n}")
        if n in seen:
            repeated.add(n)
        seen.add(n)
        numbers.append(n)

    if repeated:
        raise InvalidSelectionError(
            "Números repetidos: " + ", ".join(str(n) for n in sorted(repeated))
        )

    return numbers


def normalize_contact(contact) -> tuple[str, str]:
    contact = contact or {}
    if not isinstance(contact, dict):
        raise InvalidSelectionError("Datos de contacto inválidos")

    name = str(contact.get("name") or "").strip()
    phone = re.sub(r"\D", "", str(contact.get("phone") or ""))

    if not name:
        raise InvalidSelectionError("Debes ingresar tu nombre")
    if len(phone) < MIN_PHONE_DIGITS:
        raise InvalidSelectionError("Debes ingresar un teléfono válido")
    return name[:150], phone[:30]


def find_conflicts(raffle, numbers) -> set[int]:
    return EntryNumber.objects.taken(raffle, numbers)


# ========= Motor =========

class ReconciliationEngine:
    def __init__(self, gateway):
        self.gateway = gateway

    def initiate(self, user_id, raffle_id, chosen_numbers, contact) -> CheckoutResult:
        raffle = get_raffle(raffle_id)
        if not raffle.is_open:
            raise RaffleClosedError("La rifa no está abierta a nuevas participaciones")

        user_id = str(user_id or "").strip()
        if not user_id:
            raise InvalidSelectionError("Falta el usuario")

        numbers = validate_selection(raffle, chosen_numbers)
        name, phone = normalize_contact(contact)

        # La reserva queda guardada antes de hablar con la pasarela: si algo
        # falla después, se puede conciliar a mano.
        reservation = PendingReservation.objects.create(
            external_reference=str(uuid4()),
            user_id=user_id,
            raffle=raffle,
            chosen_numbers=numbers,
            name=name,
            phone=phone,
            amount=raffle.unit_price * len(numbers),
        )
        logger.info(
            "Reserva %s creada: rifa=%s números=%s",
            reservation.external_reference, raffle.pk, numbers,
        )

        description = f"{raffle.title} - {len(numbers)} número(s)"
        notify_url = gateways.public_url(reverse("payment_webhook"))
        try:
            checkout = self.gateway.create_checkout(
                description, reservation.amount, reservation.external_reference, notify_url
            )
        except GatewayError as exc:
            logger.error(
                "No se pudo crear el pago para la reserva %s: %s",
                reservation.external_reference, exc,
            )
            exc.extra["external_reference"] = reservation.external_reference
            raise

        reservation.preference_id = checkout.preference_id
        reservation.save(update_fields=["preference_id", "updated_at"])
        return CheckoutResult(reservation=reservation, checkout=checkout)

    def reconcile(self, provider_payment_id) -> ReconciliationOutcome:
        provider_payment_id = str(provider_payment_id)

        # Siempre el estado que informa la API, nunca el del aviso.
        payment = self.gateway.get_payment_status(provider_payment_id)
        reference = payment.external_reference

        with transaction.atomic():
            reservation = None
            if reference:
                reservation = (
                    PendingReservation.objects.select_for_update()
                    .filter(external_reference=reference)
                    .first()
                )

            if reservation is None:
                self._audit(
                    None, payment, ReconciliationAudit.OUTCOME_NOT_FOUND,
                    "No existe una reserva con esa referencia",
                )
                outcome = None
            else:
                outcome = self._apply(reservation, payment)

        if outcome is None:
            logger.warning(
                "Pago %s (%s) sin reserva asociada: referencia %r",
                provider_payment_id, payment.status, reference,
            )
            raise ReservationNotFoundError(
                f"No existe reserva para la referencia {reference!r}",
                provider_payment_id=provider_payment_id,
            )
        return outcome

    def reconcile_reservation(self, reservation) -> ReconciliationOutcome:
        if not reservation.payment_provider_id:
            raise ValidationError(
                f"La reserva {reservation.external_reference} no tiene id de pago asociado"
            )
        return self.reconcile(reservation.payment_provider_id)

    # ---------- transiciones (dentro de transaction.atomic) ----------

    def _apply(self, reservation, payment):
        if reservation.is_terminal and self._is_extra_payment(reservation, payment):
            return self._flag_extra_payment(reservation, payment)

        if reservation.is_terminal:
            self._audit(
                reservation, payment, ReconciliationAudit.OUTCOME_DUPLICATE,
                f"Reserva ya en estado {reservation.status}",
            )
            logger.info(
                "Aviso repetido para %s (ya %s)", reservation.external_reference, reservation.status
            )
            return ReconciliationOutcome(
                reservation=reservation,
                status=reservation.status,
                observed_status=payment.status,
                entry=ConfirmedEntry.objects.filter(reservation=reservation).first(),
                conflict_numbers=list(reservation.conflict_numbers or []),
                duplicate=True,
            )

        reservation.payment_provider_id = payment.provider_payment_id

        if payment.status == gateways.STATUS_PENDING:
            reservation.save(update_fields=["payment_provider_id", "updated_at"])
            self._audit(reservation, payment, ReconciliationAudit.OUTCOME_PENDING)
            return ReconciliationOutcome(reservation, reservation.status, payment.status)

        if payment.status == gateways.STATUS_REJECTED:
            reservation.status = PendingReservation.STATUS_REJECTED
            reservation.rejection_reason = PendingReservation.REASON_PROVIDER
            reservation.save(update_fields=[
                "payment_provider_id", "status", "rejection_reason", "updated_at",
            ])
            self._audit(reservation, payment, ReconciliationAudit.OUTCOME_REJECTED)
            logger.info("Pago rechazado para %s", reservation.external_reference)
            return ReconciliationOutcome(reservation, reservation.status, payment.status)

        return self._confirm(reservation, payment)

    def _confirm(self, reservation, payment):
        # Serializa las confirmaciones de la misma rifa
        raffle = Raffle.objects.select_for_update().get(pk=reservation.raffle_id)
        numbers = reservation.numbers()

        entry = None
        conflict = find_conflicts(raffle, numbers)
        if not conflict:
            try:
                with transaction.atomic():
                    entry = ConfirmedEntry.objects.create(
                        reservation=reservation,
                        user_id=reservation.user_id,
                        raffle=raffle,
                        numbers=numbers,
                        name=reservation.name,
                        phone=reservation.phone,
                        payment_provider_id=payment.provider_payment_id,
                        amount_paid=payment.amount,
                    )
                    EntryNumber.objects.bulk_create(
                        [EntryNumber(raffle=raffle, number=n, entry=entry) for n in numbers]
                    )
            except IntegrityError:
                # Otra instancia confirmó alguno de estos números primero
                conflict = EntryNumber.objects.taken(raffle, numbers)
                if not conflict:
                    raise
                entry = None

        if conflict:
            return self._reject_conflict(reservation, payment, conflict)

        reservation.status = PendingReservation.STATUS_PROCESSED
        reservation.save(update_fields=["payment_provider_id", "status", "updated_at"])
        self._audit(reservation, payment, ReconciliationAudit.OUTCOME_PROCESSED)

        if payment.amount != reservation.amount:
            logger.warning(
                "Monto pagado %s distinto al esperado %s para %s",
                payment.amount, reservation.amount, reservation.external_reference,
            )
        logger.info(
            "Reserva %s confirmada: rifa=%s números=%s",
            reservation.external_reference, raffle.pk, numbers,
        )
        return ReconciliationOutcome(reservation, reservation.status, payment.status, entry=entry)

    def _reject_conflict(self, reservation, payment, conflict):
        error = NumberConflictError(conflict)
        reservation.status = PendingReservation.STATUS_REJECTED
        reservation.rejection_reason = PendingReservation.REASON_CONFLICT
        reservation.conflict_numbers = error.numbers
        reservation.save(update_fields=[
            "payment_provider_id", "status", "rejection_reason", "conflict_numbers", "updated_at",
        ])
        self._audit(
            reservation, payment, ReconciliationAudit.OUTCOME_CONFLICT,
            f"{error.__class__.__name__}: {error.message}",
        )
        logger.error(
            "Pago %s aprobado pero con números ya vendidos %s (reserva %s). "
            "Requiere devolución manual.",
            payment.provider_payment_id, error.numbers, reservation.external_reference,
        )
        return ReconciliationOutcome(
            reservation, reservation.status, payment.status, conflict_numbers=error.numbers
        )

    @staticmethod
    def _is_extra_payment(reservation, payment):
        # Mismo external_reference, otro pago aprobado: la persona reintentó
        # dentro de la misma preferencia o pagó dos veces.
        return (
            payment.status == gateways.STATUS_APPROVED
            and payment.provider_payment_id != reservation.payment_provider_id
        )

    def _flag_extra_payment(self, reservation, payment):
        self._audit(
            reservation, payment, ReconciliationAudit.OUTCOME_REFUND,
            (
                f"Pago aprobado {payment.provider_payment_id} sobre reserva ya "
                f"{reservation.status} con el pago {reservation.payment_provider_id}"
            ),
        )
        logger.error(
            "Pago %s aprobado para la reserva %s, que ya estaba %s con el pago %s. "
            "Requiere devolución manual.",
            payment.provider_payment_id, reservation.external_reference,
            reservation.status, reservation.payment_provider_id,
        )
        return ReconciliationOutcome(
            reservation=reservation,
            status=reservation.status,
            observed_status=payment.status,
            entry=ConfirmedEntry.objects.filter(reservation=reservation).first(),
            conflict_numbers=list(reservation.conflict_numbers or []),
            duplicate=True,
            refund_required=True,
        )

    def _audit(self, reservation, payment, outcome, detail=""):
        return ReconciliationAudit.objects.create(
            reservation=reservation,
            external_reference=(payment.external_reference or "")[:64],
            provider_payment_id=payment.provider_payment_id,
            observed_status=payment.status,
            outcome=outcome,
            detail=detail,
            amount=payment.amount,
        )


def get_engine():
    return ReconciliationEngine(gateway=gateways.get_gateway())
