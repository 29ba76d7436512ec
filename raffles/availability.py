import random
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from .exceptions import InvalidSelectionError, RaffleNotFoundError
from .models import Raffle, PendingReservation, EntryNumber


def get_raffle(raffle_id) -> Raffle:
    try:
        return Raffle.objects.get(pk=raffle_id)
    except (Raffle.DoesNotExist, ValueError, TypeError):
        raise RaffleNotFoundError(f"Rifa {raffle_id} no existe")


def taken_numbers(raffle: Raffle) -> set[int]:
    """
    Devuelve un set con todos los números que deben aparecer como 'tomados':
    - Números con participación confirmada (pagos aprobados).
    - Si RAFFLE_PENDING_HOLD_MINUTES > 0, también los de reservas pendientes
      creadas dentro de esa ventana.
    """
    taken = EntryNumber.objects.taken(raffle)

    hold_minutes = settings.RAFFLE_PENDING_HOLD_MINUTES
    if hold_minutes > 0:
        since = timezone.now() - timedelta(minutes=hold_minutes)
        pending = (
            PendingReservation.objects.for_raffle(raffle)
            .pending()
            .filter(created_at__gt=since)
            .values_list("chosen_numbers", flat=True)
        )
        for nums in pending:
            taken.update(int(n) for n in nums)

    return taken


def available_numbers(raffle_id) -> set[int]:
    """
    Foto instantánea de los números libres; no reserva nada. El control
    definitivo se hace al confirmar el pago.
    """
    raffle = get_raffle(raffle_id)
    return set(raffle.number_range()) - taken_numbers(raffle)


def pick_random_numbers(raffle_id, quantity, rng=None) -> list[int]:
    if quantity < 1:
        raise InvalidSelectionError("La cantidad debe ser al menos 1")

    available = sorted(available_numbers(raffle_id))
    if quantity > len(available):
        raise InvalidSelectionError(
            f"Solo hay {len(available)} números disponibles. Elige una cantidad menor."
        )

    rng = rng or random.SystemRandom()
    return sorted(rng.sample(available, quantity))
