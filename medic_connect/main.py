import sys
import argparse
import time

import uvicorn
from fastapi import Request
from prometheus_client import Counter, Histogram
import logging
from prometheus_fastapi_instrumentator import Instrumentator
from .app import create_app
from .app.checkpoint_checker import check_and_sync_checkpoints
from .app.models import Base
from .app.dependencies import create_store, get_engine, get_redis_client
from .app.storage import STATE_KEYS

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

app = create_app()

# Custom Prometheus metrics for specific routes
ROUTE_REQUEST_COUNT = Counter("route_request_count", "Total number of requests per route", ["method", "endpoint"])
ROUTE_REQUEST_LATENCY = Histogram("route_request_latency_seconds", "Request latency in seconds per route", ["method", "endpoint"])


# Instrument the app with Prometheus metrics
Instrumentator().instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")

# Middleware to track custom metrics
@app.middleware("http")
async def add_metrics(request: Request, call_next):
    start_time = time.time()

    # Process the request
    response = await call_next(request)

    # Label by route template so ids in the path do not create new series
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    ROUTE_REQUEST_COUNT.labels(method=request.method, endpoint=endpoint).inc()
    ROUTE_REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)

    return response


def start_server():
    uvicorn.run(app, host="0.0.0.0", port=8000)


def create_tables():
    engine = get_engine()
    logging.info(f"Using database URL: {engine.url}")
    Base.metadata.create_all(engine)
    logging.info("Database tables created successfully.")


def sync_checkpoints():
    report = check_and_sync_checkpoints(create_store('sql'), create_store('redis'), get_redis_client())
    for key, diff in report.items():
        logging.info(f"{key}: {len(diff)} discrepancies")


def clear_redis_state():
    store = create_store('redis')
    for key in STATE_KEYS:
        store.delete(key)
    logging.info("Redis state checkpoints cleared successfully.")


def main():
    parser = argparse.ArgumentParser(description="MedicConnect Booking Core")
    parser.add_argument(
        '--mode',
        type=str,
        choices=['server', 'checkpoint-sync', 'create-tables', 'clear-state'],
        required=True,
        help="Mode to run the application in. Choices are 'server' to start the FastAPI server, 'checkpoint-sync' to repair the Redis checkpoints from the SQL ones, 'create-tables' to create the database tables, or 'clear-state' to clear the Redis state checkpoints."
    )

    args = parser.parse_args()

    if args.mode == 'server':
        start_server()
    elif args.mode == 'checkpoint-sync':
        sync_checkpoints()
    elif args.mode == 'create-tables':
        create_tables()
    elif args.mode == 'clear-state':
        clear_redis_state()


if __name__ == "__main__":
    main()
