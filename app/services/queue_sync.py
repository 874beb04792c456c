# app/services/queue_sync.py
import asyncio
from typing import Awaitable, Callable, Iterable, List

from app.data.database import SessionLocal
from app.domain.errors import NotFoundError
from app.services.order_service import OrderService, VISIBLE_STATUSES
from app.utils.settings import QUEUE_REFRESH_INTERVAL_SECONDS, QUEUE_WINDOW_HOURS
from app.utils.logging import get_logger

logger = get_logger(__name__)

MAX_RECONNECT_DELAY = 30.0


class QueueSynchronizer:
    """
    Kolejka zamowien dla obslugi, trzymana w pamieci.

    Trzy niezalezne zrodla zmian, wszystkie zbiegaja sie do jednej listy:
    -change feed na tabeli orders
    -pelne odswiezenie co refresh_interval sekund (zastepuje liste)
    -reczne odswiezenie (refresh)

    Lista jest posortowana od najstarszych; aktualizacja nie zmienia pozycji.
    Zrodlem prawdy dla statusow zawsze jest serwer.
    """

    def __init__(
        self,
        fetch_visible: Callable[[], Awaitable[List[dict]]],
        fetch_order: Callable[[int], Awaitable[dict | None]],
        advance: Callable[[int, str], Awaitable[dict]],
        listen,
        statuses: Iterable[str] = VISIBLE_STATUSES,
        refresh_interval: float = QUEUE_REFRESH_INTERVAL_SECONDS,
        on_error: Callable[[Exception], None] | None = None,
        on_new_order: Callable[[dict], None] | None = None,
        reconnect_delay: float = 1.0,
    ):
        self._fetch_visible = fetch_visible
        self._fetch_order = fetch_order
        self._advance = advance
        self.listen = listen
        self.statuses = set(statuses)
        self.refresh_interval = refresh_interval
        self.on_error = on_error
        self.on_new_order = on_new_order
        self.reconnect_delay = reconnect_delay

        self.orders: List[dict] = []
        self.is_refreshing = False
        self._tasks: list[asyncio.Task] = []

    async def start(self):
        await self.refresh()
        self._tasks = [
            asyncio.create_task(self._consume(), name="queue-change-feed"),
            asyncio.create_task(self._periodic(), name="queue-refresh"),
        ]

    async def close(self):
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    # =====================================================
    # ODSWIEZANIE
    # =====================================================
    async def refresh(self) -> bool:
        self.is_refreshing = True
        try:
            orders = await self._fetch_visible()
        except Exception as e:
            # lista zostaje jak byla, nigdy nie czyscimy jej na bledzie
            logger.error(f"Queue refresh failed: {e}")
            if self.on_error:
                self.on_error(e)
            return False
        finally:
            self.is_refreshing = False

        self.orders = list(orders)
        return True

    async def _periodic(self):
        while True:
            await asyncio.sleep(self.refresh_interval)
            await self.refresh()

    # =====================================================
    # CHANGE FEED
    # =====================================================
    async def _consume(self):
        delay = self.reconnect_delay
        while True:
            try:
                async for event in self.listen("orders"):
                    delay = self.reconnect_delay
                    try:
                        await self.apply_event(event)
                    except Exception:
                        # kolejne odswiezenie i tak wyrowna stan
                        logger.exception(f"Could not apply order change {event.get('type')}")
            except Exception:
                logger.exception(f"Order change feed failed, resubscribing in {delay:.1f}s")
            else:
                logger.warning(f"Order change feed closed, resubscribing in {delay:.1f}s")

            await asyncio.sleep(delay)
            delay = min(delay * 2, MAX_RECONNECT_DELAY)

    async def apply_event(self, event: dict):
        event_type = event.get("type")
        new = event.get("new") or {}
        old = event.get("old") or {}

        if event_type == "INSERT":
            if new.get("status") not in self.statuses:
                return
            full = await self._fetch_order(new["id"])
            if full:
                is_new = self._index(full["id"]) is None
                self._upsert(full)
                if is_new and self.on_new_order:
                    self.on_new_order(full)

        elif event_type == "UPDATE":
            if new.get("status") not in self.statuses:
                self._remove(new.get("id"))
                return
            full = await self._fetch_order(new["id"])
            if full is None:
                return
            if full["status"] not in self.statuses:
                self._remove(full["id"])
            else:
                self._upsert(full)

        elif event_type == "DELETE":
            self._remove(old.get("id") or new.get("id"))

    def _index(self, order_id) -> int | None:
        for i, order in enumerate(self.orders):
            if order["id"] == order_id:
                return i
        return None

    def _upsert(self, order: dict):
        i = self._index(order["id"])
        if i is None:
            self.orders.append(order)
        else:
            self.orders[i] = order

    def _remove(self, order_id):
        self.orders = [o for o in self.orders if o["id"] != order_id]

    # =====================================================
    # AKCJE OBSLUGI
    # =====================================================
    async def advance(self, order_id: int, target_status: str) -> dict:
        """
        Optymistycznie zmienia status lokalnie, a przy bledzie serwera
        przywraca poprzedni i przepuszcza wyjatek dalej (toast).
        """
        i = self._index(order_id)
        previous = None
        if i is not None:
            previous = self.orders[i]["status"]
            self.orders[i] = {**self.orders[i], "status": target_status}

        try:
            return await self._advance(order_id, target_status)
        except Exception as e:
            logger.warning(f"Status change {previous} -> {target_status} for order {order_id} rejected: {e}")
            j = self._index(order_id)
            if previous is not None and j is not None and self.orders[j]["status"] == target_status:
                self.orders[j] = {**self.orders[j], "status": previous}
            raise

    # =====================================================
    # WIDOKI
    # =====================================================
    def counts(self) -> dict:
        result = {status: 0 for status in VISIBLE_STATUSES if status in self.statuses}
        for order in self.orders:
            result[order["status"]] = result.get(order["status"], 0) + 1
        return result

    def filtered(self, status: str | None = None) -> List[dict]:
        if status is None:
            return list(self.orders)
        return [o for o in self.orders if o["status"] == status]


async def subscribe_queue(
    statuses: Iterable[str] = VISIBLE_STATUSES,
    window_hours: int = QUEUE_WINDOW_HOURS,
    session_factory=SessionLocal,
    change_feed=None,
    **kwargs,
) -> QueueSynchronizer:
    """
    Zwraca uruchomiona, zywa kolejke podpieta pod serwisy i change feed.
    Zamknij przez close().
    """
    statuses = list(statuses)

    def _run(fn):
        db = session_factory()
        try:
            return fn(OrderService(db, change_feed))
        finally:
            db.close()

    async def fetch_visible():
        return await asyncio.to_thread(_run, lambda svc: svc.list_queue(statuses, window_hours))

    def _get_or_none(svc: OrderService, order_id: int):
        try:
            return svc.get_order(order_id)
        except NotFoundError:
            return None

    async def fetch_order(order_id: int):
        return await asyncio.to_thread(_run, lambda svc: _get_or_none(svc, order_id))

    async def advance(order_id: int, target_status: str):
        return await asyncio.to_thread(_run, lambda svc: svc.advance_order_status(order_id, target_status))

    sync = QueueSynchronizer(
        fetch_visible=fetch_visible,
        fetch_order=fetch_order,
        advance=advance,
        listen=change_feed.listen,
        statuses=statuses,
        **kwargs,
    )
    await sync.start()
    return sync
