from django.db import models
from django.db.models import Q, F


class Raffle(models.Model):
    STATUS_OPEN = "open"
    STATUS_CLOSED = "closed"
    STATUS_COMPLETED = "completed"
    STATUS_CHOICES = [
        (STATUS_OPEN, "open"),
        (STATUS_CLOSED, "closed"),
        (STATUS_COMPLETED, "completed"),
    ]

    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    min_number = models.PositiveIntegerField(default=1)
    max_number = models.PositiveIntegerField(default=100)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_OPEN)

    # Resultado del sorteo
    winner_entry = models.ForeignKey(
        "ConfirmedEntry",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    winning_number = models.PositiveIntegerField(null=True, blank=True)
    drawn_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    closed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=Q(min_number__lte=F("max_number")),
                name="raffle_valid_number_range",
            )
        ]

    def __str__(self):
        return self.title

    @property
    def is_open(self):
        return self.status == self.STATUS_OPEN

    def number_range(self):
        return range(self.min_number, self.max_number + 1)


# ========= Reservas pendientes de pago =========

class PendingReservationQuerySet(models.QuerySet):
    def pending(self):
        return self.filter(status=PendingReservation.STATUS_PENDING)

    def for_raffle(self, raffle):
        return self.filter(raffle=raffle)

    def get_by_reference(self, external_reference, for_update=False):
        qs = self.select_for_update() if for_update else self
        return qs.get(external_reference=external_reference)


class PendingReservation(models.Model):
    STATUS_PENDING = "pending"
    STATUS_PROCESSED = "processed"
    STATUS_REJECTED = "rejected"
    STATUS_CHOICES = [
        (STATUS_PENDING, "pending"),
        (STATUS_PROCESSED, "processed"),
        (STATUS_REJECTED, "rejected"),
    ]
    TERMINAL_STATUSES = (STATUS_PROCESSED, STATUS_REJECTED)

    REASON_PROVIDER = "rejected_by_provider"
    REASON_CONFLICT = "number_conflict"
    REASON_CHOICES = [
        (REASON_PROVIDER, "rejected_by_provider"),
        (REASON_CONFLICT, "number_conflict"),
    ]

    external_reference = models.CharField(max_length=64, unique=True)   # idempotencia
    user_id = models.CharField(max_length=64)
    raffle = models.ForeignKey(Raffle, on_delete=models.PROTECT, related_name="reservations")
    chosen_numbers = models.JSONField(default=list)

    name = models.CharField(max_length=150)
    phone = models.CharField(max_length=30, blank=True)

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    payment_provider_id = models.CharField(max_length=100, null=True, blank=True)
    preference_id = models.CharField(max_length=100, null=True, blank=True)

    rejection_reason = models.CharField(max_length=30, choices=REASON_CHOICES, blank=True)
    conflict_numbers = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PendingReservationQuerySet.as_manager()

    class Meta:
        indexes = [models.Index(fields=["raffle", "status"], name="reservation_raffle_status_idx")]

    def __str__(self):
        return f"{self.external_reference} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def numbers(self):
        return [int(n) for n in self.chosen_numbers]


# ========= Participaciones confirmadas =========

class ConfirmedEntryQuerySet(models.QuerySet):
    def for_raffle(self, raffle):
        return self.filter(raffle=raffle)

    def for_user(self, user_id):
        return self.filter(user_id=user_id).select_related("raffle").order_by("-created_at", "-id")


class ConfirmedEntry(models.Model):
    reservation = models.OneToOneField(
        PendingReservation, on_delete=models.PROTECT, related_name="entry"
    )
    user_id = models.CharField(max_length=64)
    raffle = models.ForeignKey(Raffle, on_delete=models.PROTECT, related_name="entries")
    numbers = models.JSONField(default=list)

    name = models.CharField(max_length=150)
    phone = models.CharField(max_length=30, blank=True)

    payment_provider_id = models.CharField(max_length=100)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = ConfirmedEntryQuerySet.as_manager()

    class Meta:
        verbose_name_plural = "confirmed entries"

    def __str__(self):
        return f"{self.raffle_id} - {self.name} {self.numbers}"


class EntryNumberQuerySet(models.QuerySet):
    def taken(self, raffle, numbers=None):
        qs = self.filter(raffle=raffle)
        if numbers is not None:
            qs = qs.filter(number__in=list(numbers))
        return set(qs.values_list("number", flat=True))


class EntryNumber(models.Model):
    """
    Un número vendido. La restricción única (raffle, number) es la última
    barrera contra la doble asignación, incluso entre procesos distintos.
    """
    raffle = models.ForeignKey(Raffle, on_delete=models.PROTECT, related_name="sold_numbers")
    number = models.PositiveIntegerField()
    entry = models.ForeignKey(ConfirmedEntry, on_delete=models.PROTECT, related_name="number_rows")

    objects = EntryNumberQuerySet.as_manager()

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["raffle", "number"], name="uniq_raffle_number")
        ]

    def __str__(self):
        return f"{self.raffle_id} - #{self.number}"


# ========= Auditoría de notificaciones =========

class ReconciliationAudit(models.Model):
    OUTCOME_PROCESSED = "processed"
    OUTCOME_REJECTED = "rejected"
    OUTCOME_PENDING = "pending"
    OUTCOME_DUPLICATE = "duplicate"
    OUTCOME_CONFLICT = "conflict"
    OUTCOME_NOT_FOUND = "not_found"
    OUTCOME_REFUND = "refund"
    OUTCOME_CHOICES = [
        (OUTCOME_PROCESSED, "processed"),
        (OUTCOME_REJECTED, "rejected"),
        (OUTCOME_PENDING, "pending"),
        (OUTCOME_DUPLICATE, "duplicate"),
        (OUTCOME_CONFLICT, "conflict"),
        (OUTCOME_NOT_FOUND, "not_found"),
        (OUTCOME_REFUND, "refund"),
    ]

    reservation = models.ForeignKey(
        PendingReservation,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="audit_records",
    )
    external_reference = models.CharField(max_length=64, blank=True)
    provider_payment_id = models.CharField(max_length=100)
    observed_status = models.CharField(max_length=10)
    outcome = models.CharField(max_length=10, choices=OUTCOME_CHOICES)
    detail = models.TextField(blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.provider_payment_id} {self.observed_status} -> {self.outcome}"

    def save(self, *args, **kwargs):
        # Registro de solo anexado
        if self.pk is not None:
            raise ValueError("ReconciliationAudit records are append-only")
        super().save(*args, **kwargs)
