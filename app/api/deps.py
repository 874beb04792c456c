# app/api/deps.py
import redis

from app.services.change_feed import ChangeFeed
from app.services.gateway_client import GatewayClient
from app.services.notification_service import NotificationService
from app.utils.settings import REDIS_URL


def get_change_feed() -> ChangeFeed:
    return ChangeFeed()


def get_gateway() -> GatewayClient:
    return GatewayClient()


def get_notifier() -> NotificationService:
    return NotificationService()


def get_cart_storage():
    return redis.Redis.from_url(REDIS_URL)
