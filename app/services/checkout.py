# app/services/checkout.py
import asyncio
from typing import Callable

from app.data.database import SessionLocal
from app.domain.cart import Cart
from app.domain.errors import ValidationError
from app.services.order_service import OrderService, validate_initials
from app.services.payment_service import PaymentService
from app.services.payment_watcher import PaymentWatcher, db_status_fetcher
from app.utils.settings import CONFIRMATION_REDIRECT_SECONDS, PAYMENT_POLL_INTERVAL_SECONDS
from app.utils.logging import get_logger

logger = get_logger(__name__)


class ServiceBackend:
    """
    Kiosk w tym samym procesie co serwisy: kazde wywolanie dostaje wlasna sesje
    bazy i idzie w watku.
    """

    def __init__(
        self,
        session_factory=SessionLocal,
        gateway=None,
        change_feed=None,
        notifier=None,
        poll_interval: float = PAYMENT_POLL_INTERVAL_SECONDS,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.change_feed = change_feed
        self.notifier = notifier
        self.poll_interval = poll_interval

    def _run(self, fn):
        db = self.session_factory()
        try:
            return fn(db)
        finally:
            db.close()

    async def create_order(self, lines, customer_initials: str, payment_method: str) -> dict:
        return await asyncio.to_thread(
            self._run,
            lambda db: OrderService(db, self.change_feed).create_order(
                lines, customer_initials, payment_method
            ),
        )

    async def request_qr_payment(self, amount, session_id: str, order_id: int, customer_name: str | None) -> dict:
        return await asyncio.to_thread(
            self._run,
            lambda db: PaymentService(
                db, gateway=self.gateway, change_feed=self.change_feed, notifier=self.notifier
            ).request_qr_payment(amount, session_id, order_id, customer_name),
        )

    def make_watcher(self, session_id: str, on_confirmed: Callable[[str], None]) -> PaymentWatcher:
        return PaymentWatcher(
            session_id=session_id,
            listen=self.change_feed.listen,
            fetch_status=db_status_fetcher(self.session_factory),
            on_confirmed=on_confirmed,
            poll_interval=self.poll_interval,
        )


class CheckoutFlow:
    """
    Jedno podejscie klienta do kasy na kiosku.

    Stany: idle -> processing -> (awaiting_payment | gateway_error) -> success
    albo failed (powrot do checkout). Kazda sciezka konczy sie przyciskiem
    ponowienia albo przekierowaniem.
    """

    def __init__(
        self,
        cart: Cart,
        backend,
        navigate: Callable[[str], None],
        redirect_seconds: int = CONFIRMATION_REDIRECT_SECONDS,
        tick: float = 1.0,
        on_tick: Callable[[int], None] | None = None,
    ):
        self.cart = cart
        self.backend = backend
        self.navigate = navigate
        self.redirect_seconds = redirect_seconds
        self.tick = tick
        self.on_tick = on_tick

        self.state = "idle"
        self.error: str | None = None
        self.initials: str | None = None
        self.order_id: int | None = None
        self.session_id: str | None = None
        self.amount = None
        self.qr_payload: str | None = None
        self.gateway_url: str | None = None
        self.expires_at = None
        self.countdown = redirect_seconds

        self._watcher: PaymentWatcher | None = None
        self._countdown_task: asyncio.Task | None = None

    async def place(self, customer_initials: str, payment_method: str) -> str:
        # walidacja lokalna, nic nie idzie do serwera
        self.initials = validate_initials(customer_initials)

        if len(self.cart) == 0:
            self.navigate("menu")
            raise ValidationError("Koszyk jest pusty")

        self.state = "processing"
        try:
            placed = await self.backend.create_order(self.cart.lines, self.initials, payment_method)
        except Exception as e:
            logger.error(f"Order placement failed: {e}")
            self.state = "failed"
            self.error = "Nie udalo sie zlozyc zamowienia, sprobuj ponownie"
            self.navigate("checkout")
            return self.state

        self.order_id = placed["order_id"]
        self.session_id = placed["session_id"]
        self.amount = placed["total_amount"]
        self.expires_at = placed.get("expires_at")

        if payment_method == "cash":
            self._succeed()
            return self.state

        await self._request_payment()
        return self.state

    async def _request_payment(self):
        try:
            result = await self.backend.request_qr_payment(
                self.amount, self.session_id, self.order_id, self.initials
            )
        except Exception as e:
            # zamowienie i sesja zostaja w pending, ponowienie uzyje tych samych
            logger.error(f"QR payment request failed for session {self.session_id}: {e}")
            self.state = "gateway_error"
            self.error = str(e)
            return

        self.qr_payload = result["qr_payload"]
        self.gateway_url = result.get("gateway_url")
        self.expires_at = result.get("expires_at") or self.expires_at
        self.error = None

        if self.state == "success":
            return
        self.state = "awaiting_payment"

        if self._watcher is None:
            self._watcher = self.backend.make_watcher(self.session_id, self._on_payment_confirmed)
            self._watcher.start()

    async def retry_payment(self) -> str:
        if self.state != "gateway_error":
            return self.state
        self.state = "processing"
        await self._request_payment()
        return self.state

    def _on_payment_confirmed(self, via: str):
        logger.info(f"Order {self.order_id} paid (confirmed via {via})")
        self._succeed()

    def _succeed(self):
        if self.state == "success":
            return
        self.state = "success"
        self.cart.clear()
        self._countdown_task = asyncio.create_task(self._countdown())

    async def _countdown(self):
        self.countdown = self.redirect_seconds
        while self.countdown > 0:
            if self.on_tick:
                self.on_tick(self.countdown)
            await asyncio.sleep(self.tick)
            self.countdown -= 1
        self.navigate("menu")

    async def wait_redirect(self):
        if self._countdown_task is not None:
            await self._countdown_task

    async def leave(self, destination: str = "menu"):
        """Reczna nawigacja: odliczanie i nasluchiwanie platnosci koncza sie od razu."""
        if self._countdown_task is not None and not self._countdown_task.done():
            self._countdown_task.cancel()
            await asyncio.gather(self._countdown_task, return_exceptions=True)
        if self._watcher is not None:
            await self._watcher.close()
        self.navigate(destination)
