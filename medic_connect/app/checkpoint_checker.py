# checkpoint_checker.py
import json
import logging

from .storage import APPOINTMENTS_KEY, PROVIDERS_KEY, SUBSCRIPTIONS_KEY

# state key -> field identifying a record inside that checkpoint
RECORD_IDS = {
    PROVIDERS_KEY: "id",
    APPOINTMENTS_KEY: "id",
    SUBSCRIPTIONS_KEY: "provider_id",
}


def acquire_lock(redis_client, lock_key, ttl=10):
    return redis_client.set(lock_key, "locked", nx=True, ex=ttl)


def release_lock(redis_client, lock_key):
    redis_client.delete(lock_key)


def _fingerprint(record):
    return json.dumps(record, sort_keys=True)


def compare_records(correct_records, cached_records, id_field="id"):
    discrepancies = []
    correct = {record[id_field]: record for record in correct_records}
    cached = {record[id_field]: record for record in cached_records}

    for record_id in correct.keys() - cached.keys():
        discrepancies.append(f"Missing in replica: {record_id}")
        logging.info(f"Missing in replica: {record_id}")

    for record_id in cached.keys() - correct.keys():
        discrepancies.append(f"Unexpected in replica: {record_id}")
        logging.info(f"Unexpected in replica: {record_id}")

    for record_id in correct.keys() & cached.keys():
        if _fingerprint(correct[record_id]) != _fingerprint(cached[record_id]):
            discrepancies.append(f"Stale in replica: {record_id}")
            logging.info(f"Stale in replica: {record_id}")

    return sorted(discrepancies)


def check_and_sync_checkpoints(source_store, replica_store, redis_client):
    """
    Compare every checkpoint in the replica with the authoritative source and
    rewrite the replica copy where they differ. Returns {state key: discrepancies}.
    """
    report = {}
    for key, id_field in RECORD_IDS.items():
        lock_key = f"lock:{key}"

        if acquire_lock(redis_client, lock_key):
            try:
                correct_records = source_store.get(key)
                if correct_records is None:
                    logging.info(f"No checkpoint for {key} in source, nothing to sync.")
                    continue
                cached_records = replica_store.get(key) or []

                diff = compare_records(correct_records, cached_records, id_field)
                report[key] = diff

                if diff:
                    logging.warning(f"Discrepancy found for {key}: {diff}")
                    replica_store.set(key, correct_records)
                    logging.info(f"Replica updated for {key}.")
                else:
                    logging.info(f"Replica is consistent for {key}.")
            finally:
                release_lock(redis_client, lock_key)
        else:
            logging.info(f"Checkpoint check skipped for {key} because another process is running.")
    return report
