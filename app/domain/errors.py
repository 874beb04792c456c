# app/domain/errors.py
"""
Bledy domenowe. Dziedzicza po wbudowanych wyjatkach, ktore routery
juz tlumacza na kody HTTP.
"""


class ValidationError(ValueError):
    """Zle dane od klienta (inicjaly, pusty koszyk). Poprawiane lokalnie."""


class InvalidTransition(ValueError):
    def __init__(self, order_id, current: str | None, target: str):
        self.order_id = order_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition order {order_id} from {current} to {target}")


class PaymentSessionClosed(ValidationError):
    """Sesja platnosci juz potwierdzona albo wygasla, nowy QR nie jest wystawiany."""

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Payment session {session_id} is {status}, cannot request a new QR")


class NotFoundError(LookupError):
    pass


class GatewayError(RuntimeError):
    """Bramka niedostepna albo odpowiedz nie 2xx. Mozna ponowic recznie."""


class SignatureError(PermissionError):
    pass


class PersistenceError(RuntimeError):
    pass
