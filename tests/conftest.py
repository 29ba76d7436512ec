"""Pytest configuration and fixtures."""

from decimal import Decimal

import pytest
from django.core.cache import cache

from raffles.exceptions import GatewayError
from raffles.gateways import CheckoutHandle, PaymentGateway, PaymentStatus
from raffles.models import Raffle
from raffles.reconciliation import ReconciliationEngine


class FakeGateway(PaymentGateway):
    """Pasarela en memoria: los tests fijan el estado de cada pago."""

    name = "fake"

    def __init__(self):
        self.payments = {}
        self.checkouts = []
        self.fail_checkout = False
        self.fail_status = False

    def create_checkout(self, description, amount, external_reference, notify_url):
        if self.fail_checkout:
            raise GatewayError("Pasarela caída")
        self.checkouts.append(
            {
                "description": description,
                "amount": amount,
                "external_reference": external_reference,
                "notify_url": notify_url,
            }
        )
        n = len(self.checkouts)
        return CheckoutHandle(preference_id=f"pref-{n}", redirect_url=f"https://pay.example/checkout/{n}")

    def pay(self, external_reference, status="approved", amount="0", payment_id=None):
        payment_id = payment_id or f"pay-{len(self.payments) + 1}"
        self.payments[payment_id] = PaymentStatus(
            provider_payment_id=payment_id,
            status=status,
            external_reference=external_reference,
            amount=Decimal(str(amount)),
        )
        return payment_id

    def get_payment_status(self, provider_payment_id):
        if self.fail_status:
            raise GatewayError("Pasarela caída")
        try:
            return self.payments[provider_payment_id]
        except KeyError:
            raise GatewayError(f"Pago {provider_payment_id} no existe")


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def engine(gateway):
    return ReconciliationEngine(gateway=gateway)


@pytest.fixture
def use_fake_gateway(monkeypatch, engine):
    """Hace que vistas, admin y comandos usen la pasarela en memoria."""
    monkeypatch.setattr("raffles.views.get_engine", lambda: engine)
    monkeypatch.setattr("raffles.admin.get_engine", lambda: engine)
    monkeypatch.setattr("raffles.management.commands.reconcile_payment.get_engine", lambda: engine)
    return engine


@pytest.fixture
def raffle(db):
    return Raffle.objects.create(
        title="Rifa de prueba",
        min_number=1,
        max_number=10,
        unit_price=Decimal("10.00"),
    )


@pytest.fixture
def contact():
    return {"name": "Ana Pérez", "phone": "+56 9 1234 5678"}


@pytest.fixture
def reserve(engine, raffle, contact):
    """Crea una reserva pendiente y devuelve su external_reference."""
    def _reserve(numbers, user_id="user-a", target=None):
        result = engine.initiate(user_id, (target or raffle).pk, numbers, contact)
        return result.external_reference
    return _reserve


@pytest.fixture
def approve(engine, gateway):
    """Simula el pago aprobado y el aviso de la pasarela."""
    def _approve(external_reference, status="approved", amount="20.00"):
        payment_id = gateway.pay(external_reference, status=status, amount=amount)
        return engine.reconcile(payment_id)
    return _approve
