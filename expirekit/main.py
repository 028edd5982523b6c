import asyncio
import contextlib
import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from expirekit.api import routes
from expirekit.core.config import Settings, settings as default_settings
from expirekit.core.errors import InsufficientDataError, StoreUnavailableError
from expirekit.core.logging import configure_logging
from expirekit.db.session import get_engine
from expirekit.pipeline.service import MLService

logger = logging.getLogger(__name__)


async def _retrain_periodically(service: MLService, interval_seconds: float):
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(service.train)
        except Exception:
            logger.exception("Scheduled retraining failed; keeping the previous models")


def create_app(settings: Settings = None, engine: Engine = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        service = MLService(engine or get_engine(settings.DATABASE_URL), settings)
        app.state.ml_service = service
        if settings.PERSIST_MODELS:
            service.load_persisted_ensemble()
        if settings.TRAIN_ON_STARTUP:
            await asyncio.to_thread(service.train)
        task = None
        if settings.RETRAIN_INTERVAL_MINUTES > 0:
            task = asyncio.create_task(
                _retrain_periodically(service, settings.RETRAIN_INTERVAL_MINUTES * 60)
            )
        yield
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(title="ExpireKit - Consumption & Expiry Predictions", lifespan=lifespan)
    app.include_router(routes.router)

    @app.exception_handler(InsufficientDataError)
    async def insufficient_data_handler(request: Request, exc: InsufficientDataError):
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "available": exc.available, "required": exc.required},
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    return app


app = create_app()


def run():
    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT)


if __name__ == "__main__":
    run()
