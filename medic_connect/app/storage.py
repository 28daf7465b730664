# storage.py
import copy
import json
import logging
import threading
from typing import Any, Optional

from .models import StateRecord

KEY_PREFIX = "medic_connect:"
PROVIDERS_KEY = f"{KEY_PREFIX}providers"
APPOINTMENTS_KEY = f"{KEY_PREFIX}appointments"
SUBSCRIPTIONS_KEY = f"{KEY_PREFIX}subscriptions"
STATE_KEYS = (PROVIDERS_KEY, APPOINTMENTS_KEY, SUBSCRIPTIONS_KEY)


class KeyValueStore:
    """Durability interface used to checkpoint service state across restarts."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class InMemoryStore(KeyValueStore):
    def __init__(self, initial=None):
        self._data = {}
        self._lock = threading.Lock()
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key):
        with self._lock:
            value = self._data.get(key)
        # Callers get their own copy, same as decoding from a real backend
        return copy.deepcopy(value)

    def set(self, key, value):
        encoded = json.loads(json.dumps(value))
        with self._lock:
            self._data[key] = encoded

    def delete(self, key):
        with self._lock:
            self._data.pop(key, None)


class RedisStore(KeyValueStore):
    def __init__(self, redis_client):
        self.redis_client = redis_client

    def get(self, key):
        cached = self.redis_client.get(key)
        if cached is None:
            return None
        logging.info(f"Retrieved from Redis: {key}")
        return json.loads(cached)

    def set(self, key, value):
        self.redis_client.set(key, json.dumps(value))

    def delete(self, key):
        self.redis_client.delete(key)


class SqlStore(KeyValueStore):
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, key):
        db = self.session_factory()
        try:
            record = db.query(StateRecord).filter_by(key=key).first()
            if record is None:
                return None
            logging.info(f"Retrieved from SQL: {key}")
            return json.loads(record.value)
        finally:
            db.close()

    def set(self, key, value):
        db = self.session_factory()
        try:
            record = db.query(StateRecord).filter_by(key=key).first()
            if record is None:
                db.add(StateRecord(key=key, value=json.dumps(value)))
            else:
                record.value = json.dumps(value)
            db.commit()
        except Exception as e:
            db.rollback()
            logging.error(f"Error writing state record {key}: {str(e)}")
            raise
        finally:
            db.close()

    def delete(self, key):
        db = self.session_factory()
        try:
            db.query(StateRecord).filter_by(key=key).delete()
            db.commit()
        finally:
            db.close()
