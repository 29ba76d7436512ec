from django.core.management.base import BaseCommand, CommandError

from raffles.exceptions import RaffleError
from raffles.reconciliation import get_engine


class Command(BaseCommand):
    help = "Concilia a mano un pago de la pasarela (por ejemplo, si el webhook nunca llegó)"

    def add_arguments(self, parser):
        parser.add_argument("payment_ids", nargs="+", help="Id(s) de pago en la pasarela")

    def handle(self, *args, **options):
        engine = get_engine()
        failed = 0

        for payment_id in options["payment_ids"]:
            try:
                outcome = engine.reconcile(payment_id)
            except RaffleError as e:
                failed += 1
                self.stdout.write(self.style.ERROR(f"{payment_id}: {e.message}"))
                continue

            ref = outcome.reservation.external_reference
            if outcome.conflict_numbers:
                nums = ", ".join(str(n) for n in outcome.conflict_numbers)
                self.stdout.write(self.style.WARNING(
                    f"{payment_id}: reserva {ref} rechazada, números ya vendidos: {nums}"
                ))
            elif outcome.duplicate:
                self.stdout.write(f"{payment_id}: reserva {ref} ya estaba {outcome.status}")
            else:
                self.stdout.write(self.style.SUCCESS(f"{payment_id}: reserva {ref} {outcome.status}"))

        if failed:
            raise CommandError(f"{failed} pago(s) no se pudieron conciliar")
