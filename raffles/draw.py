import logging
import random
from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from .availability import get_raffle
from .exceptions import (
    AlreadyDrawnError,
    NoParticipantsError,
    RaffleNotClosedError,
    RaffleNotFoundError,
    RaffleStateError,
)
from .models import Raffle, ConfirmedEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrawResult:
    raffle: Raffle
    entry: ConfirmedEntry
    winning_number: int


def close_raffle(raffle_id) -> Raffle:
    """Cierra la venta (open -> closed). No se puede reabrir."""
    raffle = get_raffle(raffle_id)
    updated = Raffle.objects.filter(pk=raffle.pk, status=Raffle.STATUS_OPEN).update(
        status=Raffle.STATUS_CLOSED, closed_at=timezone.now()
    )
    if not updated:
        raise RaffleStateError(f"La rifa {raffle.pk} no está abierta (estado {raffle.status})")

    raffle.refresh_from_db()
    logger.info("Rifa %s cerrada", raffle.pk)
    return raffle


def draw(raffle_id, rng=None) -> DrawResult:
    """
    Elige una participación al azar (todas con igual probabilidad, sin
    importar cuántos números tenga) y luego un número dentro de ella.
    Guarda el ganador y deja la rifa 'completed' en la misma transacción.
    """
    rng = rng or random.SystemRandom()

    with transaction.atomic():
        try:
            raffle = Raffle.objects.select_for_update().get(pk=raffle_id)
        except (Raffle.DoesNotExist, ValueError, TypeError):
            raise RaffleNotFoundError(f"Rifa {raffle_id} no existe")

        if raffle.status == Raffle.STATUS_COMPLETED:
            raise AlreadyDrawnError(f"La rifa {raffle.pk} ya fue sorteada")
        if raffle.status != Raffle.STATUS_CLOSED:
            raise RaffleNotClosedError("La rifa debe estar cerrada antes de sortear")

        entries = list(ConfirmedEntry.objects.for_raffle(raffle).order_by("id"))
        if not entries:
            raise NoParticipantsError("No hay participantes en esta rifa")

        winner = rng.choice(entries)
        winning_number = int(rng.choice(winner.numbers))

        raffle.winner_entry = winner
        raffle.winning_number = winning_number
        raffle.drawn_at = timezone.now()
        raffle.status = Raffle.STATUS_COMPLETED
        raffle.save(update_fields=["winner_entry", "winning_number", "drawn_at", "status"])

    logger.info(
        "Rifa %s sorteada: participación %s, número %s", raffle.pk, winner.pk, winning_number
    )
    return DrawResult(raffle=raffle, entry=winner, winning_number=winning_number)
