import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.router import api_router
from core.config import Settings, settings
from core.logging_config import configure_logging
from database.session import build_store, init_db
from database.store import DocumentStore
from services.dispatch_service import MeasurementDispatcher
from services.ingestion_service import DeviceRegistry
from services.measurement_service import MeasurementRecorder
from services.webhook_service import request_exercise_id

logger = logging.getLogger(__name__)


def create_app(cfg: Settings = settings, store: DocumentStore | None = None) -> FastAPI:
    configure_logging(cfg)

    app = FastAPI(title=cfg.app_name)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if store is None:
        store = build_store(cfg)
    dispatcher = MeasurementDispatcher(store, cfg)
    recorder = MeasurementRecorder(store, dispatcher)

    async def resolve_exercise_id(patient_id: str) -> str | None:
        return await asyncio.to_thread(request_exercise_id, patient_id, cfg)

    app.state.settings = cfg
    app.state.store = store
    app.state.dispatcher = dispatcher
    app.state.recorder = recorder
    app.state.devices = DeviceRegistry(recorder, resolve_exercise_id)

    app.include_router(api_router, prefix=cfg.api_prefix)

    @app.get(f"{cfg.api_prefix}/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        init_db(store)
        logger.info("%s started with %s store", cfg.app_name, type(store).__name__)

    @app.on_event("shutdown")
    async def _shutdown():
        await app.state.devices.shutdown()
        await dispatcher.close()

    return app


app = create_app()
