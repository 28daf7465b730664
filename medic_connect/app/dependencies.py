# dependencies.py
import os
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Request
from redis import Redis
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .availability import AvailabilityEngine
from .ledger import AppointmentLedger
from .models import Base
from .payments import PaymentOrchestrator
from .registry import ProviderRegistry
from .storage import InMemoryStore, RedisStore, SqlStore
from .subscriptions import SubscriptionBook
from .verification import VerificationWorkflow

DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///./medic_connect.db')
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
STATE_BACKEND = os.getenv('STATE_BACKEND', 'memory')

SETTLEMENT_STAGE_DELAY_SECONDS = float(os.getenv('SETTLEMENT_STAGE_DELAY_SECONDS', 0))
SETTLEMENT_STAGE_TIMEOUT_SECONDS = float(os.getenv('SETTLEMENT_STAGE_TIMEOUT_SECONDS', 10))
SUBSCRIPTION_PLAN = os.getenv('SUBSCRIPTION_PLAN', 'Pro')
SUBSCRIPTION_PERIOD_DAYS = int(os.getenv('SUBSCRIPTION_PERIOD_DAYS', 30))


@lru_cache(maxsize=None)
def get_engine():
    return create_engine(DATABASE_URL)


@lru_cache(maxsize=None)
def get_session_factory():
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


@lru_cache(maxsize=None)
def get_redis_client():
    return Redis.from_url(REDIS_URL, decode_responses=True)


def create_store(backend: str = None):
    backend = backend or STATE_BACKEND
    if backend == 'redis':
        return RedisStore(get_redis_client())
    if backend == 'sql':
        Base.metadata.create_all(bind=get_engine())
        return SqlStore(get_session_factory())
    if backend == 'memory':
        return InMemoryStore()
    raise ValueError(f"Unknown state backend: {backend}")


@dataclass
class Services:
    registry: ProviderRegistry
    ledger: AppointmentLedger
    availability: AvailabilityEngine
    payments: PaymentOrchestrator
    verification: VerificationWorkflow
    subscriptions: SubscriptionBook


def build_services(store=None, stage_handlers=None, stage_timeout: float = None,
                   stage_delay: float = None, seed: bool = True) -> Services:
    """Wire the booking core once per process around a single state store."""
    store = store if store is not None else create_store()
    registry = ProviderRegistry(store, seed=seed)
    ledger = AppointmentLedger(registry, store)
    subscriptions = SubscriptionBook(store, plan=SUBSCRIPTION_PLAN, period_days=SUBSCRIPTION_PERIOD_DAYS)
    payments = PaymentOrchestrator(
        ledger,
        stage_handlers=stage_handlers,
        stage_timeout=SETTLEMENT_STAGE_TIMEOUT_SECONDS if stage_timeout is None else stage_timeout,
        stage_delay=SETTLEMENT_STAGE_DELAY_SECONDS if stage_delay is None else stage_delay,
    )
    return Services(
        registry=registry,
        ledger=ledger,
        availability=ledger.availability,
        payments=payments,
        verification=VerificationWorkflow(registry, subscriptions),
        subscriptions=subscriptions,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
