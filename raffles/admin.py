from django.contrib import admin, messages
from django.urls import reverse
from django.utils.html import format_html

from .draw import close_raffle, draw
from .exceptions import RaffleError
from .models import Raffle, PendingReservation, ConfirmedEntry, ReconciliationAudit
from .reconciliation import get_engine


@admin.action(description="Cerrar venta de números")
def close_raffles(modeladmin, request, queryset):
    for raffle in queryset:
        try:
            close_raffle(raffle.pk)
        except RaffleError as e:
            messages.error(request, f"Rifa {raffle.pk}: {e.message}")
            continue
        messages.success(request, f"Rifa {raffle.pk} cerrada.")


@admin.action(description="Sortear ganador")
def draw_winner(modeladmin, request, queryset):
    for raffle in queryset:
        try:
            result = draw(raffle.pk)
        except RaffleError as e:
            messages.error(request, f"Rifa {raffle.pk}: {e.message}")
            continue
        messages.success(
            request,
            (
                f"Rifa {raffle.pk} sorteada. Número ganador: {result.winning_number} "
                f"({result.entry.name}, tel. {result.entry.phone})."
            ),
        )


@admin.action(description="Conciliar con la pasarela")
def reconcile_now(modeladmin, request, queryset):
    """
    Vuelve a consultar el estado del pago y aplica la transición.
    Pensado para avisos de la pasarela que nunca llegaron.
    """
    engine = get_engine()
    count_ok = 0

    for r in queryset:
        try:
            outcome = engine.reconcile_reservation(r)
        except RaffleError as e:
            messages.error(
                request,
                f"Error al conciliar la reserva {r.external_reference}: {e.message}",
            )
            continue

        if outcome.conflict_numbers:
            messages.warning(
                request,
                (
                    f"Reserva {r.external_reference} rechazada: los números "
                    f"{', '.join(str(n) for n in outcome.conflict_numbers)} ya estaban vendidos. "
                    f"Contacta a la persona para devolver el pago."
                ),
            )
        else:
            messages.success(request, f"Reserva {r.external_reference}: {outcome.status}.")
        count_ok += 1

    if count_ok > 1:
        messages.info(request, f"Se procesaron {count_ok} reservas.")


@admin.register(PendingReservation)
class PendingReservationAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "raffle",
        "status",
        "rejection_reason",
        "amount",
        "name",
        "phone",
        "reserved_numbers",
        "payment_provider_id",
        "created_at",
    )
    list_filter = ("status", "rejection_reason", "raffle")
    search_fields = ("external_reference", "name", "phone", "user_id", "payment_provider_id")
    readonly_fields = (
        "external_reference", "user_id", "raffle", "chosen_numbers", "amount", "status",
        "payment_provider_id", "preference_id", "rejection_reason", "conflict_numbers",
        "created_at", "updated_at",
    )
    actions = [reconcile_now]

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.display(description="Números reservados")
    def reserved_numbers(self, obj):
        nums = obj.chosen_numbers or []
        if not nums:
            return "-"
        return ", ".join(str(n) for n in nums)


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ConfirmedEntry)
class ConfirmedEntryAdmin(ReadOnlyAdmin):
    list_display = ("id", "raffle", "numbers", "name", "phone", "amount_paid", "created_at")
    list_filter = ("raffle",)
    search_fields = ("name", "phone", "user_id", "payment_provider_id")


@admin.register(ReconciliationAudit)
class ReconciliationAuditAdmin(ReadOnlyAdmin):
    list_display = ("id", "provider_payment_id", "external_reference", "observed_status", "outcome", "created_at")
    list_filter = ("outcome", "observed_status")
    search_fields = ("provider_payment_id", "external_reference")


@admin.register(Raffle)
class RaffleAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "title",
        "unit_price",
        "min_number",
        "max_number",
        "status",
        "winning_number",
        "export_links",
    )
    list_filter = ("status",)
    search_fields = ("title",)
    readonly_fields = ("status", "winner_entry", "winning_number", "drawn_at", "closed_at")
    actions = [close_raffles, draw_winner]

    def get_readonly_fields(self, request, obj=None):
        fields = super().get_readonly_fields(request, obj)
        # El rango queda fijo cuando hay números vendidos o la venta cerró
        if obj is not None and (not obj.is_open or obj.entries.exists()):
            fields = (*fields, "min_number", "max_number")
        return fields

    @admin.display(description="Exportar")
    def export_links(self, obj):
        url_entries = reverse("export_entries_csv", args=[obj.id])
        url_entries_json = reverse("export_entries_json", args=[obj.id])
        url_reservations = reverse("export_reservations_csv", args=[obj.id])
        return format_html(
            '<a href="{}">Participaciones CSV</a> | <a href="{}">JSON</a> | <a href="{}">Reservas CSV</a>',
            url_entries,
            url_entries_json,
            url_reservations,
        )
