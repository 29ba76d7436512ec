from decimal import Decimal

from django.core.management.base import BaseCommand
from raffles.models import Raffle

class Command(BaseCommand):
    help = "Crea una rifa demo abierta"

    def add_arguments(self, parser):
        parser.add_argument("--min", type=int, default=1)
        parser.add_argument("--max", type=int, default=100)
        parser.add_argument("--price", type=Decimal, default=Decimal("10.00"))

    def handle(self, *args, **options):
        if Raffle.objects.filter(status=Raffle.STATUS_OPEN).exists():
            self.stdout.write("Ya existe una rifa abierta")
            return

        if options["min"] > options["max"]:
            self.stdout.write(self.style.ERROR("--min no puede ser mayor que --max"))
            return

        raffle = Raffle.objects.create(
            title="Rifa demo",
            description="Elige tus números y paga para participar.",
            min_number=options["min"],
            max_number=options["max"],
            unit_price=options["price"],
        )
        self.stdout.write(self.style.SUCCESS(f"Rifa demo creada (id={raffle.pk})"))
