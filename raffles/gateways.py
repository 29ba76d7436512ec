"""
Adaptadores de la pasarela de pago.

Traducen entre el proveedor externo y el flujo de reservas; no guardan nada
en la base de datos. Cualquier fallo de red o respuesta inesperada se
convierte en GatewayError: nunca se deduce un estado de un llamado fallido.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from uuid import uuid4

import requests
from django.conf import settings
from django.core.cache import cache
from django.urls import reverse
from django.utils.module_loading import import_string

from .exceptions import GatewayError

logger = logging.getLogger(__name__)

STATUS_APPROVED = "approved"
STATUS_PENDING = "pending"
STATUS_REJECTED = "rejected"
STATUSES = (STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED)


@dataclass(frozen=True)
class CheckoutHandle:
    preference_id: str
    redirect_url: str


@dataclass(frozen=True)
class PaymentStatus:
    provider_payment_id: str
    status: str
    external_reference: str
    amount: Decimal


def _to_decimal(value):
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise GatewayError(f"Monto inválido informado por la pasarela: {value!r}")


def public_url(path):
    base = (settings.RAFFLE_PUBLIC_BASE_URL or "").rstrip("/")
    return f"{base}{path}"


class PaymentGateway:
    """Contrato mínimo que necesita el motor de conciliación."""

    name = "base"

    def create_checkout(self, description, amount, external_reference, notify_url):
        raise NotImplementedError

    def get_payment_status(self, provider_payment_id):
        raise NotImplementedError

    def verify_notification(self, headers, data_id):
        return True


# ========= Mercado Pago =========

class MercadoPagoGateway(PaymentGateway):
    name = "mercadopago"

    # Estados de Mercado Pago -> estados del flujo
    STATUS_MAP = {
        "approved": STATUS_APPROVED,
        "pending": STATUS_PENDING,
        "in_process": STATUS_PENDING,
        "authorized": STATUS_PENDING,
        "in_mediation": STATUS_PENDING,
        "rejected": STATUS_REJECTED,
        "cancelled": STATUS_REJECTED,
        "refunded": STATUS_REJECTED,
        "charged_back": STATUS_REJECTED,
    }

    def __init__(self, access_token=None, currency=None, api_base_url=None,
                 webhook_secret=None, timeout=None, session=None):
        self.access_token = access_token or settings.MP_ACCESS_TOKEN
        self.currency = currency or settings.MP_CURRENCY
        self.api_base_url = (api_base_url or settings.MP_API_BASE_URL).rstrip("/")
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.MP_WEBHOOK_SECRET
        self.timeout = timeout or settings.MP_TIMEOUT
        self.session = session or requests.Session()

    def _request(self, method, path, **kwargs):
        if not self.access_token:
            raise GatewayError("MP_ACCESS_TOKEN no configurado")

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        url = f"{self.api_base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("Mercado Pago no responde (%s %s): %s", method, path, exc)
            raise GatewayError("No se pudo contactar a Mercado Pago") from exc

        if resp.status_code >= 300:
            logger.error("Error MP API (%s) %s %s: %s", resp.status_code, method, path, resp.text[:200])
            raise GatewayError(f"Mercado Pago respondió {resp.status_code}")

        try:
            return resp.json()
        except ValueError as exc:
            raise GatewayError("Respuesta de Mercado Pago no es JSON") from exc

    def create_checkout(self, description, amount, external_reference, notify_url):
        payload = {
            "items": [
                {
                    "title": description,
                    "quantity": 1,
                    "unit_price": float(amount),
                    "currency_id": self.currency,
                }
            ],
            "external_reference": external_reference,
            "notification_url": notify_url,
            "back_urls": {
                "success": public_url("/pago-exitoso/"),
                "pending": public_url("/pago-pendiente/"),
                "failure": public_url("/pago-fallido/"),
            },
            "auto_return": "approved",
        }
        data = self._request("POST", "/checkout/preferences", json=payload)

        preference_id = data.get("id")
        redirect_url = data.get("init_point") or data.get("sandbox_init_point")
        if not preference_id or not redirect_url:
            raise GatewayError("Mercado Pago no devolvió una preferencia válida")

        logger.info("Preferencia %s creada para %s", preference_id, external_reference)
        return CheckoutHandle(preference_id=str(preference_id), redirect_url=redirect_url)

    def get_payment_status(self, provider_payment_id):
        data = self._request("GET", f"/v1/payments/{provider_payment_id}")

        raw_status = data.get("status")
        status = self.STATUS_MAP.get(raw_status)
        if status is None:
            raise GatewayError(f"Estado de pago desconocido: {raw_status!r}")

        external_reference = data.get("external_reference") or ""
        return PaymentStatus(
            provider_payment_id=str(data.get("id") or provider_payment_id),
            status=status,
            external_reference=str(external_reference),
            amount=_to_decimal(data.get("transaction_amount", 0)),
        )

    def verify_notification(self, headers, data_id):
        """
        Valida la cabecera x-signature (HMAC-SHA256) cuando hay
        MP_WEBHOOK_SECRET configurado. Sin secreto se acepta todo, porque
        el estado se consulta igual a la API.
        """
        if not self.webhook_secret:
            return True

        signature = headers.get("x-signature") or ""
        request_id = headers.get("x-request-id") or ""
        parts = {}
        for chunk in signature.split(","):
            key, _, value = chunk.strip().partition("=")
            parts[key] = value

        ts, v1 = parts.get("ts"), parts.get("v1")
        if not ts or not v1:
            return False

        data_id = str(data_id)
        if data_id.isalnum():
            data_id = data_id.lower()
        manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
        expected = hmac.new(
            self.webhook_secret.encode(), manifest.encode(), hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, v1)


# ========= Pasarela simulada (desarrollo) =========

class MockGateway(PaymentGateway):
    """
    Simula la pasarela guardando los pagos en la caché de Django.
    El endpoint de checkout simulado llama a `settle` para fijar el estado.
    """

    name = "mock"
    CACHE_PREFIX = "mock-payment:"
    CACHE_TIMEOUT = 60 * 60 * 24

    def _key(self, provider_payment_id):
        return f"{self.CACHE_PREFIX}{provider_payment_id}"

    def create_checkout(self, description, amount, external_reference, notify_url):
        payment_id = f"MOCK-{uuid4().hex}"
        cache.set(
            self._key(payment_id),
            {
                "external_reference": external_reference,
                "amount": str(amount),
                "status": STATUS_PENDING,
                "description": description,
            },
            self.CACHE_TIMEOUT,
        )
        redirect_url = public_url(reverse("mock_checkout", args=[payment_id]))
        return CheckoutHandle(preference_id=payment_id, redirect_url=redirect_url)

    def settle(self, provider_payment_id, status):
        if status not in STATUSES:
            raise GatewayError(f"Estado simulado inválido: {status!r}")
        payment = cache.get(self._key(provider_payment_id))
        if payment is None:
            raise GatewayError(f"Pago simulado {provider_payment_id} no existe")
        payment["status"] = status
        cache.set(self._key(provider_payment_id), payment, self.CACHE_TIMEOUT)

    def get_payment_status(self, provider_payment_id):
        payment = cache.get(self._key(provider_payment_id))
        if payment is None:
            raise GatewayError(f"Pago simulado {provider_payment_id} no existe")
        return PaymentStatus(
            provider_payment_id=provider_payment_id,
            status=payment["status"],
            external_reference=payment["external_reference"],
            amount=_to_decimal(payment["amount"]),
        )


def get_gateway():
    gateway_class = import_string(settings.RAFFLE_PAYMENT_GATEWAY)
    return gateway_class()
