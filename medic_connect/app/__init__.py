from fastapi import FastAPI

from .dependencies import build_services
from .errors import BookingError


def create_app(services=None) -> FastAPI:
    app = FastAPI(title="MedicConnect booking core")

    app.state.services = services if services is not None else build_services()

    from .routes import booking_error_handler, router as main_router
    app.add_exception_handler(BookingError, booking_error_handler)
    app.include_router(main_router)

    return app
