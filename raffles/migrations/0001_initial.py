import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Raffle",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                ("min_number", models.PositiveIntegerField(default=1)),
                ("max_number", models.PositiveIntegerField(default=100)),
                ("unit_price", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("status", models.CharField(
                    choices=[("open", "open"), ("closed", "closed"), ("completed", "completed")],
                    default="open",
                    max_length=10,
                )),
                ("winning_number", models.PositiveIntegerField(blank=True, null=True)),
                ("drawn_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("min_number__lte", models.F("max_number"))),
                        name="raffle_valid_number_range",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="PendingReservation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("external_reference", models.CharField(max_length=64, unique=True)),
                ("user_id", models.CharField(max_length=64)),
                ("chosen_numbers", models.JSONField(default=list)),
                ("name", models.CharField(max_length=150)),
                ("phone", models.CharField(blank=True, max_length=30)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("status", models.CharField(
                    choices=[("pending", "pending"), ("processed", "processed"), ("rejected", "rejected")],
                    default="pending",
                    max_length=10,
                )),
                ("payment_provider_id", models.CharField(blank=True, max_length=100, null=True)),
                ("preference_id", models.CharField(blank=True, max_length=100, null=True)),
                ("rejection_reason", models.CharField(
                    blank=True,
                    choices=[("rejected_by_provider", "rejected_by_provider"), ("number_conflict", "number_conflict")],
                    max_length=30,
                )),
                ("conflict_numbers", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("raffle", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="reservations",
                    to="raffles.raffle",
                )),
            ],
            options={
                "indexes": [models.Index(fields=["raffle", "status"], name="reservation_raffle_status_idx")],
            },
        ),
        migrations.CreateModel(
            name="ConfirmedEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_id", models.CharField(max_length=64)),
                ("numbers", models.JSONField(default=list)),
                ("name", models.CharField(max_length=150)),
                ("phone", models.CharField(blank=True, max_length=30)),
                ("payment_provider_id", models.CharField(max_length=100)),
                ("amount_paid", models.DecimalField(decimal_places=2, max_digits=12)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("raffle", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="entries",
                    to="raffles.raffle",
                )),
                ("reservation", models.OneToOneField(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="entry",
                    to="raffles.pendingreservation",
                )),
            ],
            options={
                "verbose_name_plural": "confirmed entries",
            },
        ),
        migrations.CreateModel(
            name="EntryNumber",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("number", models.PositiveIntegerField()),
                ("entry", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="number_rows",
                    to="raffles.confirmedentry",
                )),
                ("raffle", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="sold_numbers",
                    to="raffles.raffle",
                )),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("raffle", "number"), name="uniq_raffle_number")
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationAudit",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("external_reference", models.CharField(blank=True, max_length=64)),
                ("provider_payment_id", models.CharField(max_length=100)),
                ("observed_status", models.CharField(max_length=10)),
                ("outcome", models.CharField(
                    choices=[
                        ("processed", "processed"),
                        ("rejected", "rejected"),
                        ("pending", "pending"),
                        ("duplicate", "duplicate"),
                        ("conflict", "conflict"),
                        ("not_found", "not_found"),
                        ("refund", "refund"),
                    ],
                    max_length=10,
                )),
                ("detail", models.TextField(blank=True)),
                ("amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("reservation", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="audit_records",
                    to="raffles.pendingreservation",
                )),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.AddField(
            model_name="raffle",
            name="winner_entry",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.PROTECT,
                related_name="+",
                to="raffles.confirmedentry",
            ),
        ),
    ]
