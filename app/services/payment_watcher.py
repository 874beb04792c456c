# app/services/payment_watcher.py
import asyncio
from contextlib import aclosing
from typing import Awaitable, Callable

from app.data.database import SessionLocal
from app.repos.payment_repo import PaymentRepo
from app.utils.settings import PAYMENT_POLL_INTERVAL_SECONDS
from app.utils.logging import get_logger

logger = get_logger(__name__)


def db_status_fetcher(session_factory=SessionLocal) -> Callable[[str], Awaitable[str | None]]:
    """Odczyt statusu sesji platnosci z bazy, w watku zeby nie blokowac petli."""

    def _read(session_id: str) -> str | None:
        db = session_factory()
        try:
            ps = PaymentRepo(db).get_by_session_id(session_id)
            return ps.status if ps else None
        finally:
            db.close()

    async def fetch(session_id: str) -> str | None:
        return await asyncio.to_thread(_read, session_id)

    return fetch


class PaymentWatcher:
    """
    Czeka na potwierdzenie platnosci dwiema drogami naraz:
    -push: change feed na payment_sessions dla danego session_id
    -poll: odczyt statusu co poll_interval sekund (push nie jest gwarantowany)

    Pierwsza droga, ktora zobaczy 'confirmed', ustawia wynik (tylko raz),
    anuluje druga i dopiero wtedy wola on_confirmed.
    """

    def __init__(
        self,
        session_id: str,
        listen,
        fetch_status: Callable[[str], Awaitable[str | None]],
        on_confirmed: Callable[[str], None],
        poll_interval: float = PAYMENT_POLL_INTERVAL_SECONDS,
    ):
        self.session_id = session_id
        self.listen = listen
        self.fetch_status = fetch_status
        self.on_confirmed = on_confirmed
        self.poll_interval = poll_interval

        self._settled: asyncio.Future | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def confirmed(self) -> bool:
        return self._settled is not None and self._settled.done() and not self._settled.cancelled()

    def start(self):
        if self._tasks:
            return
        self._settled = asyncio.get_running_loop().create_future()
        self._tasks = [
            asyncio.create_task(self._push(), name=f"payment-push-{self.session_id}"),
            asyncio.create_task(self._poll(), name=f"payment-poll-{self.session_id}"),
        ]
        logger.info(f"Watching payment session {self.session_id}")

    def _settle(self, via: str):
        if self._settled is None or self._settled.done():
            return
        self._settled.set_result(via)

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()

        logger.info(f"Payment session {self.session_id} confirmed via {via}")
        self.on_confirmed(via)

    async def _push(self):
        try:
            events = self.listen(
                "payment_sessions",
                lambda row: row.get("session_id") == self.session_id,
            )
            async with aclosing(events):
                async for event in events:
                    new = event.get("new") or {}
                    if event.get("type") == "UPDATE" and new.get("status") == "confirmed":
                        self._settle("push")
                        return
        except Exception:
            # polling dalej dziala
            logger.exception(f"Push path failed for payment session {self.session_id}")

    async def _poll(self):
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                status = await self.fetch_status(self.session_id)
            except Exception as e:
                logger.warning(f"Polling error for payment session {self.session_id}: {e}")
                continue

            if status == "confirmed":
                self._settle("poll")
                return

    async def wait(self) -> str:
        return await asyncio.shield(self._settled)

    async def close(self):
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._settled is not None and not self._settled.done():
            self._settled.cancel()
        logger.info(f"Stopped watching payment session {self.session_id}")
