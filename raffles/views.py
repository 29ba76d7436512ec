import csv
import json
import logging

from django.conf import settings
from django.contrib.admin.views.decorators import staff_member_required
from django.http import JsonResponse, HttpResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt, ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_POST, require_http_methods
from django_ratelimit.decorators import ratelimit

from .availability import available_numbers, get_raffle, pick_random_numbers
from .draw import close_raffle, draw
from .exceptions import (
    GatewayError,
    InvalidSelectionError,
    RaffleError,
    ReservationNotFoundError,
    ValidationError,
)
from .gateways import MockGateway
from .models import ConfirmedEntry, PendingReservation, Raffle
from .reconciliation import get_engine

logger = logging.getLogger(__name__)


# ========= Utilidades comunes =========

def _error_response(exc: RaffleError, status=None):
    return JsonResponse(exc.as_dict(), status=status or exc.http_status)


def _json_body(request):
    try:
        data = json.loads(request.body.decode() or "{}")
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("JSON inválido")
    if not isinstance(data, dict):
        raise ValidationError("JSON inválido")
    return data


def _checkout_rate(group, request):
    return settings.RAFFLE_CHECKOUT_RATE


def _read_notification(request):
    """
    Devuelve (type, payment_id) del aviso de la pasarela. Mercado Pago manda
    los datos en la query string, en JSON o como formulario según la versión.
    """
    kind = request.GET.get("type") or request.GET.get("topic")
    payment_id = request.GET.get("data.id") or request.GET.get("id")

    if request.content_type == "application/json":
        body = _json_body(request)
        data = body.get("data")
    else:
        body = request.POST
        data = body.get("data")
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError:
                pass
        payment_id = body.get("data.id") or body.get("data[id]") or payment_id

    kind = body.get("type") or body.get("topic") or kind
    if isinstance(data, dict):
        payment_id = data.get("id") or payment_id
    elif data not in (None, ""):
        payment_id = data

    return kind, (str(payment_id) if payment_id not in (None, "") else None)


def _entry_summary(entry):
    return {
        "id": entry.pk,
        "user_id": entry.user_id,
        "name": entry.name,
        "numbers": entry.numbers,
        "payment_provider_id": entry.payment_provider_id,
    }


def _mask_phone(phone):
    # Deja visibles los 3 primeros y los 2 últimos dígitos
    phone = phone or ""
    if len(phone) > 5:
        return phone[:3] + "*" * (len(phone) - 5) + phone[-2:]
    visible = (len(phone) + 1) // 2
    return phone[:visible] + "*" * (len(phone) - visible)


def _raffle_summary(raffle):
    return {
        "id": raffle.pk,
        "title": raffle.title,
        "description": raffle.description,
        "status": raffle.status,
        "min_number": raffle.min_number,
        "max_number": raffle.max_number,
        "unit_price": str(raffle.unit_price),
        "created_at": raffle.created_at.isoformat(),
    }


# ========= Disponibilidad =========

# Deja la cookie csrftoken que el cliente reenvía al hacer checkout
@ensure_csrf_cookie
@require_GET
def raffle_numbers(request, raffle_id: int):
    try:
        random_qty = request.GET.get("random")
        if random_qty is not None:
            try:
                qty = int(random_qty)
            except ValueError:
                raise InvalidSelectionError("Cantidad inválida")
            return JsonResponse({"raffle_id": raffle_id, "numbers": pick_random_numbers(raffle_id, qty)})

        numbers = sorted(available_numbers(raffle_id))
    except RaffleError as exc:
        return _error_response(exc)

    return JsonResponse({"raffle_id": raffle_id, "available": numbers, "count": len(numbers)})


# ========= Reserva + enlace de pago =========

@require_POST
@ratelimit(key="ip", rate=_checkout_rate, block=True)
def checkout(request):
    try:
        data = _json_body(request)
        result = get_engine().initiate(
            user_id=data.get("user_id"),
            raffle_id=data.get("raffle_id"),
            chosen_numbers=data.get("chosen_numbers"),
            contact=data.get("contact"),
        )
    except RaffleError as exc:
        return _error_response(exc)

    return JsonResponse(
        {
            "ok": True,
            "external_reference": result.external_reference,
            "preference_id": result.checkout.preference_id,
            "redirect_url": result.checkout.redirect_url,
        },
        status=201,
    )


# ========= Webhook de la pasarela =========

@csrf_exempt
@require_POST
def payment_webhook(request):
    """
    Responde 2xx solo cuando el resultado quedó guardado (o cuando el aviso no
    se puede usar nunca). Si la pasarela no responde, 503 para que reintente.
    """
    try:
        kind, payment_id = _read_notification(request)
    except ValidationError as exc:
        return _error_response(exc)

    logger.info("Aviso recibido: type=%s id=%s", kind, payment_id)

    if kind != "payment":
        return JsonResponse({"ok": True, "ignored": True})
    if not payment_id:
        return _error_response(ValidationError("Falta el id de pago"))

    engine = get_engine()
    if not engine.gateway.verify_notification(request.headers, payment_id):
        logger.warning("Firma inválida en aviso de pago %s", payment_id)
        return JsonResponse({"error": "Firma inválida", "code": "invalid_signature"}, status=401)

    try:
        outcome = engine.reconcile(payment_id)
    except ReservationNotFoundError as exc:
        return JsonResponse({"ok": True, "status": "not_found", "detail": exc.message})
    except GatewayError as exc:
        logger.warning("Pasarela no disponible para el pago %s: %s", payment_id, exc)
        return _error_response(exc, status=503)

    return JsonResponse(
        {
            "ok": True,
            "external_reference": outcome.reservation.external_reference,
            "status": outcome.status,
            "duplicate": outcome.duplicate,
            "refund_required": outcome.refund_required,
            "conflict_numbers": outcome.conflict_numbers,
        }
    )


@csrf_exempt
@require_http_methods(["GET", "POST"])
def mock_checkout(request, payment_id: str):
    """
    Simula que la persona paga (o no) en la pasarela de desarrollo.
    El redirect_url del checkout apunta aquí, así que un navegador llega por
    GET; `?status=rejected` o `?status=pending` simulan los otros casos.
    """
    engine = get_engine()
    if not isinstance(engine.gateway, MockGateway):
        return JsonResponse({"error": "Pasarela simulada deshabilitada", "code": "not_found"}, status=404)

    status = request.POST.get("status") or request.GET.get("status") or "approved"
    try:
        engine.gateway.settle(payment_id, status)
        outcome = engine.reconcile(payment_id)
    except RaffleError as exc:
        return _error_response(exc)

    return JsonResponse(
        {
            "ok": True,
            "external_reference": outcome.reservation.external_reference,
            "status": outcome.status,
        }
    )


# ========= Consultas públicas =========

@require_GET
def raffle_results(request):
    """Rifas sorteadas (la más reciente primero) y las que aún no se sortean."""
    completed = (
        Raffle.objects.filter(status=Raffle.STATUS_COMPLETED)
        .select_related("winner_entry")
        .order_by("-drawn_at", "-id")
    )
    upcoming = Raffle.objects.filter(
        status__in=[Raffle.STATUS_OPEN, Raffle.STATUS_CLOSED]
    ).order_by("-created_at", "-id")

    results = []
    for raffle in completed:
        item = _raffle_summary(raffle)
        item["drawn_at"] = raffle.drawn_at.isoformat() if raffle.drawn_at else None
        item["winning_number"] = raffle.winning_number
        winner = raffle.winner_entry
        item["winner"] = {"name": winner.name, "numbers": winner.numbers} if winner else None
        results.append(item)

    return JsonResponse({"completed": results, "upcoming": [_raffle_summary(r) for r in upcoming]})


@require_GET
def user_participations(request):
    user_id = (request.GET.get("user_id") or "").strip()
    if not user_id:
        return _error_response(ValidationError("Falta el usuario"))

    items = []
    for entry in ConfirmedEntry.objects.for_user(user_id):
        raffle = entry.raffle
        items.append({
            "id": entry.pk,
            "numbers": entry.numbers,
            "name": entry.name,
            "created_at": entry.created_at.isoformat(),
            "raffle": _raffle_summary(raffle),
            "is_winner": raffle.winner_entry_id == entry.pk,
        })
    return JsonResponse({"user_id": user_id, "participations": items, "count": len(items)})


# ========= Administración: cierre y sorteo =========

@staff_member_required
@require_POST
def raffle_close(request, raffle_id: int):
    try:
        raffle = close_raffle(raffle_id)
    except RaffleError as exc:
        return _error_response(exc)
    return JsonResponse({"ok": True, "raffle_id": raffle.pk, "status": raffle.status})


@staff_member_required
@require_POST
def raffle_draw(request, raffle_id: int):
    try:
        result = draw(raffle_id)
    except RaffleError as exc:
        return _error_response(exc)

    return JsonResponse(
        {
            "ok": True,
            "raffle_id": result.raffle.pk,
            "status": result.raffle.status,
            "winning_number": result.winning_number,
            "drawn_at": result.raffle.drawn_at.isoformat(),
            "winner": _entry_summary(result.entry),
        }
    )


# ============== exportación csv ======================== #

@staff_member_required
def export_entries_csv(request, raffle_id: int):
    try:
        raffle = get_raffle(raffle_id)
    except RaffleError as exc:
        return _error_response(exc)

    resp = HttpResponse(content_type="text/csv; charset=utf-8")
    resp["Content-Disposition"] = f'attachment; filename="entries_raffle_{raffle.pk}.csv"'
    writer = csv.writer(resp)
    writer.writerow(["raffle_id", "entry_id", "numbers", "user_id", "name", "phone",
                     "payment_provider_id", "amount_paid", "created_at"])

    qs = ConfirmedEntry.objects.for_raffle(raffle).order_by("id")
    for e in qs:
        writer.writerow([e.raffle_id, e.pk, " ".join(str(n) for n in e.numbers), e.user_id,
                         e.name, e.phone, e.payment_provider_id, e.amount_paid, e.created_at])
    return resp


@staff_member_required
def export_reservations_csv(request, raffle_id: int):
    try:
        raffle = get_raffle(raffle_id)
    except RaffleError as exc:
        return _error_response(exc)

    resp = HttpResponse(content_type="text/csv; charset=utf-8")
    resp["Content-Disposition"] = f'attachment; filename="reservations_raffle_{raffle.pk}.csv"'
    writer = csv.writer(resp)
    writer.writerow(["raffle_id", "external_reference", "status", "rejection_reason", "numbers",
                     "conflict_numbers", "amount", "name", "phone", "payment_provider_id", "created_at"])

    qs = PendingReservation.objects.for_raffle(raffle).order_by("-created_at")
    for r in qs:
        writer.writerow([r.raffle_id, r.external_reference, r.status, r.rejection_reason,
                         " ".join(str(n) for n in r.chosen_numbers),
                         " ".join(str(n) for n in r.conflict_numbers or []),
                         r.amount, r.name, r.phone, r.payment_provider_id, r.created_at])
    return resp


@staff_member_required
@require_GET
def export_entries_json(request, raffle_id: int):
    """Igual que el CSV de participaciones; `?mask_phone=1` oculta los teléfonos."""
    try:
        raffle = get_raffle(raffle_id)
    except RaffleError as exc:
        return _error_response(exc)

    mask = request.GET.get("mask_phone") in ("1", "true", "yes")
    entries = ConfirmedEntry.objects.for_raffle(raffle).order_by("id")
    payload = {
        "raffle": {
            **_raffle_summary(raffle),
            "drawn_at": raffle.drawn_at.isoformat() if raffle.drawn_at else None,
            "winner_id": raffle.winner_entry_id,
            "winning_number": raffle.winning_number,
        },
        "participants": [
            {
                "id": e.pk,
                "name": e.name,
                "phone": _mask_phone(e.phone) if mask else e.phone,
                "numbers": e.numbers,
                "created_at": e.created_at.isoformat(),
            }
            for e in entries
        ],
        "export_date": timezone.now().isoformat(),
        "total_participants": len(entries),
        "phone_numbers_masked": mask,
    }

    resp = JsonResponse(payload, json_dumps_params={"indent": 2, "ensure_ascii": False})
    resp["Content-Disposition"] = f'attachment; filename="entries_raffle_{raffle.pk}.json"'
    return resp
