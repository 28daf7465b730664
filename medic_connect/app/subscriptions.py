# subscriptions.py
import logging
import threading
from datetime import date
from typing import Callable, Dict, Optional

from dateutil.relativedelta import relativedelta

from .errors import NotFoundError
from .schemas import Subscription, SubscriptionState
from .storage import SUBSCRIPTIONS_KEY


class SubscriptionBook:
    """Provider plan status tracked next to settlement; it never gates booking."""

    def __init__(self, store=None, plan: str = "Pro", period_days: int = 30,
                 today: Optional[Callable[[], date]] = None):
        self.store = store
        self.plan = plan
        self.period = relativedelta(days=period_days)
        self._today = today or date.today
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, Subscription] = {}
        stored = store.get(SUBSCRIPTIONS_KEY) if store is not None else None
        for raw in stored or []:
            subscription = Subscription.model_validate(raw)
            self._subscriptions[subscription.provider_id] = subscription

    def snapshot(self):
        with self._lock:
            return [subscription.model_dump(mode="json") for subscription in self._subscriptions.values()]

    def _save(self, subscription: Subscription) -> Subscription:
        with self._lock:
            self._subscriptions[subscription.provider_id] = subscription
            if self.store is not None:
                self.store.set(SUBSCRIPTIONS_KEY, self.snapshot())
        return subscription

    def get(self, provider_id: str) -> Subscription:
        with self._lock:
            subscription = self._subscriptions.get(provider_id)
        if subscription is None:
            raise NotFoundError("subscription", provider_id)
        return subscription

    def open(self, provider_id: str) -> Subscription:
        with self._lock:
            if provider_id in self._subscriptions:
                return self._subscriptions[provider_id]
            subscription = Subscription(
                provider_id=provider_id,
                plan=self.plan,
                renews_at=self._today() + self.period,
                status=SubscriptionState.PENDING,
            )
            return self._save(subscription)

    def activate(self, provider_id: str) -> Subscription:
        with self._lock:
            current = self._subscriptions.get(provider_id) or self.open(provider_id)
            if current.status != SubscriptionState.PENDING:
                return current
            logging.info(f"Subscription activated for provider {provider_id}")
            return self._save(current.model_copy(update={"status": SubscriptionState.ACTIVE}))

    def renew(self, provider_id: str) -> Subscription:
        with self._lock:
            current = self.get(provider_id)
            renews_at = max(current.renews_at, self._today()) + self.period
            logging.info(f"Subscription renewed for provider {provider_id} until {renews_at}")
            return self._save(current.model_copy(update={"status": SubscriptionState.RENEWED, "renews_at": renews_at}))
