import os

# przed importem app, settings czytaja env przy imporcie
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GATEWAY_SALT"] = "test-salt"
os.environ["GATEWAY_SANDBOX"] = "true"

import asyncio
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api import create_app
from app.api.deps import get_cart_storage, get_change_feed, get_gateway, get_notifier
from app.data.database import Base, get_db
from app.data import models  # noqa: F401
from app.domain.errors import GatewayError
from app.domain.schemas import Customization, LineItem, MenuItemRef
from app.domain.money import compute_line_total
from app.services.gateway_client import GatewayPayment, QrImage

SALT = "test-salt"


# ── Shared stubs ───────────────────────────────────────────────

class FakeStorage:
    """Slot klucz-wartosc jak redis.Redis (get/set)."""

    def __init__(self):
        self.data = {}
        self.writes = 0

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.writes += 1
        self.data[key] = value
        return True


class FakeChangeFeed:
    """
    Change feed w pamieci. Zdarzenia przechodza przez json jak w redisie,
    publish dziala tez z watkow (asyncio.to_thread).
    """

    def __init__(self):
        self.published = []
        self._subscribers = []

    @property
    def subscriber_count(self):
        return len(self._subscribers)

    def publish(self, table, event_type, new=None, old=None):
        event = json.loads(json.dumps(
            {"table": table, "type": event_type, "new": new, "old": old},
            default=str,
        ))
        self.published.append(event)
        for sub_table, loop, queue in list(self._subscribers):
            if sub_table == table:
                loop.call_soon_threadsafe(queue.put_nowait, event)
        return len(self._subscribers)

    async def listen(self, table, match=None):
        queue = asyncio.Queue()
        entry = (table, asyncio.get_running_loop(), queue)
        self._subscribers.append(entry)
        try:
            while True:
                event = await queue.get()
                row = event.get("new") or event.get("old") or {}
                if match is not None and not match(row):
                    continue
                yield event
        finally:
            self._subscribers.remove(entry)


class StubGateway:
    def __init__(self, fail_times=0):
        self.calls = []
        self.fail_times = fail_times

    def create_payment_request(self, amount, session_id, customer_name=None, webhook_url=None):
        self.calls.append({
            "amount": amount,
            "reference_number": session_id,
            "name": customer_name,
            "webhook": webhook_url,
        })
        if self.fail_times > 0:
            self.fail_times -= 1
            raise GatewayError("Gateway error 503: unavailable")
        n = len(self.calls)
        return GatewayPayment(
            payment_id=f"req_{n}",
            url=f"https://gateway.test/pay/req_{n}",
            qr=QrImage("data:image/png;base64,AAAA"),
        )


class StubNotifier:
    def __init__(self):
        self.reports = []

    def report_payment_inconsistency(self, session_id, order_id, reason):
        self.reports.append((session_id, order_id, reason))


def make_line(item_id="matcha", name="Matcha Latte", base="5.50", options=(), quantity=1):
    customizations = [
        Customization(
            group_id=group,
            group_name=group.title(),
            option_id=option,
            option_name=option.title(),
            price_modifier=Decimal(modifier),
        )
        for group, option, modifier in options
    ]
    menu_item = MenuItemRef(id=item_id, name=name, base_price=Decimal(base))
    return LineItem(
        menu_item=menu_item,
        quantity=quantity,
        customizations=customizations,
        line_total=compute_line_total(
            menu_item.base_price, [c.price_modifier for c in customizations], quantity
        ),
    )


# ── Fixtures ───────────────────────────────────────────────────

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def threaded_session_factory(tmp_path):
    """Plik SQLite: kazda sesja ma wlasne polaczenie, mozna jej uzywac z watkow."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'teashop.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def feed():
    return FakeChangeFeed()


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def notifier():
    return StubNotifier()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(session_factory, feed, gateway, notifier, storage):
    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_change_feed] = lambda: feed
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_cart_storage] = lambda: storage

    return TestClient(app)
