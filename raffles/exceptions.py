"""
Errores del flujo de reservas, pagos y sorteo.

Cada error lleva un `code` estable y el `http_status` con el que lo
devuelven las vistas JSON.
"""


class RaffleError(Exception):
    code = "raffle_error"
    http_status = 400

    def __init__(self, message="", **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def as_dict(self):
        data = {"error": self.message, "code": self.code}
        data.update(self.extra)
        return data


# ========= Validación =========

class ValidationError(RaffleError):
    code = "validation_error"
    http_status = 400


class InvalidSelectionError(ValidationError):
    code = "invalid_selection"


class RaffleClosedError(ValidationError):
    code = "raffle_closed"
    http_status = 409


# ========= No encontrados =========

class NotFoundError(RaffleError):
    code = "not_found"
    http_status = 404


class RaffleNotFoundError(NotFoundError):
    code = "raffle_not_found"


class ReservationNotFoundError(NotFoundError):
    code = "reservation_not_found"


# ========= Pasarela de pago =========

class GatewayError(RaffleError):
    code = "gateway_error"
    http_status = 502


# ========= Conciliación =========

class NumberConflictError(RaffleError):
    code = "number_conflict"
    http_status = 409

    def __init__(self, numbers, message=""):
        numbers = sorted(set(numbers))
        message = message or (
            "Números ya vendidos a otra persona: "
            + ", ".join(str(n) for n in numbers)
        )
        super().__init__(message, conflict_numbers=numbers)
        self.numbers = numbers


# ========= Estado de la rifa / sorteo =========

class RaffleStateError(RaffleError):
    code = "invalid_raffle_state"
    http_status = 409


class RaffleNotClosedError(RaffleStateError):
    code = "raffle_not_closed"


class AlreadyDrawnError(RaffleStateError):
    code = "already_drawn"


class NoParticipantsError(RaffleError):
    code = "no_participants"
    http_status = 409
