"""Web push broadcast to every stored browser subscription."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pywebpush import WebPushException, webpush
from supabase import Client

from aitools.errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

EXPIRED_STATUSES = {404, 410}


class PushPayload(BaseModel):
    """What the service worker renders; clicking opens ``url``."""
    title: str
    body: str
    url: Optional[str] = None


@dataclass(frozen=True)
class PushSubscription:
    endpoint: str
    p256dh: str
    auth: str


@dataclass(frozen=True)
class VapidConfig:
    public_key: str
    private_key: str
    subject: str


@dataclass
class BroadcastResult:
    sent: int = 0
    failed: int = 0
    total: int = 0
    cleaned: int = 0
    expired: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "sent": self.sent,
            "failed": self.failed,
            "total": self.total,
            "cleaned": self.cleaned,
        }


class PushSubscriptionStore(ABC):
    @abstractmethod
    def list_all(self) -> List[PushSubscription]:
        ...

    @abstractmethod
    def delete(self, endpoints: List[str]) -> None:
        ...

    @abstractmethod
    def log(self, payload: PushPayload, sent: int, failed: int) -> None:
        ...


class SupabasePushSubscriptionStore(PushSubscriptionStore):
    def __init__(self, client: Client):
        self._client = client

    def list_all(self) -> List[PushSubscription]:
        rows = self._client.table("push_subscriptions").select("endpoint, p256dh, auth").execute().data or []
        return [PushSubscription(r["endpoint"], r["p256dh"], r["auth"]) for r in rows]

    def delete(self, endpoints: List[str]) -> None:
        self._client.table("push_subscriptions").delete().in_("endpoint", endpoints).execute()

    def log(self, payload: PushPayload, sent: int, failed: int) -> None:
        self._client.table("push_notification_logs").insert(
            {"title": payload.title, "body": payload.body, "url": payload.url,
             "sent_count": sent, "failed_count": failed}
        ).execute()


class InMemoryPushSubscriptionStore(PushSubscriptionStore):
    def __init__(self, subscriptions: Optional[List[PushSubscription]] = None):
        self.subscriptions = list(subscriptions or [])
        self.logs: List[Dict[str, Any]] = []

    def list_all(self) -> List[PushSubscription]:
        return list(self.subscriptions)

    def delete(self, endpoints: List[str]) -> None:
        self.subscriptions = [s for s in self.subscriptions if s.endpoint not in endpoints]

    def log(self, payload: PushPayload, sent: int, failed: int) -> None:
        self.logs.append({"title": payload.title, "sent": sent, "failed": failed})


def _status_code(exc: WebPushException) -> Optional[int]:
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class PushBroadcaster:
    def __init__(self, store: PushSubscriptionStore, vapid: Optional[VapidConfig], timeout_seconds: float = 10.0):
        self._store = store
        self._vapid = vapid
        self._timeout = timeout_seconds

    def send_one(self, subscription: PushSubscription, data: str) -> None:
        webpush(
            subscription_info={
                "endpoint": subscription.endpoint,
                "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
            },
            data=data,
            vapid_private_key=self._vapid.private_key,
            vapid_claims={"sub": self._vapid.subject},
            timeout=self._timeout,
        )

    def broadcast(self, payload: PushPayload) -> BroadcastResult:
        if not payload.title or not payload.body:
            raise ValidationError("Title and body are required")
        if self._vapid is None:
            logger.error("Missing VAPID keys")
            raise ConfigurationError("Server configuration error: missing VAPID keys")

        subscriptions = self._store.list_all()
        result = BroadcastResult(total=len(subscriptions))
        if not subscriptions:
            logger.info("No push subscriptions found")
            return result

        data = json.dumps(payload.model_dump())
        for sub in subscriptions:
            try:
                self.send_one(sub, data)
                result.sent += 1
            except WebPushException as exc:
                result.failed += 1
                status = _status_code(exc)
                logger.warning("Push failed endpoint=%s... status=%s", sub.endpoint[:50], status)
                if status in EXPIRED_STATUSES:
                    result.expired.append(sub.endpoint)

        if result.expired:
            logger.info("Cleaning up %s expired subscriptions", len(result.expired))
            self._store.delete(result.expired)
            result.cleaned = len(result.expired)

        self._store.log(payload, result.sent, result.failed)
        logger.info("Push complete: %s sent, %s failed", result.sent, result.failed)
        return result
