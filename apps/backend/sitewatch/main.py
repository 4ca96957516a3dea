from __future__ import annotations

import os
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sitewatch import __version__
from sitewatch.analysis.base import AnalysisClient
from sitewatch.analysis.chat import ChatSessionRegistry
from sitewatch.analysis.gemini import GeminiClient
from sitewatch.api import (
    routes_cameras,
    routes_chat,
    routes_detections,
    routes_devices,
    routes_health,
    routes_notifications,
    routes_settings,
)
from sitewatch.camera.base import MediaBackend
from sitewatch.camera.devices import DeviceRegistry
from sitewatch.camera.opencv_cam import OpenCVMediaBackend
from sitewatch.config.defaults import GEMINI_API_KEY_ENV, GEMINI_SECRET_NAME
from sitewatch.config.migrate import SettingsStore
from sitewatch.pipeline.aggregator import DetectionAggregator
from sitewatch.pipeline.alerts import NotificationCenter
from sitewatch.pipeline.lifecycle import CameraManager
from sitewatch.pipeline.scheduler import AnalysisScheduler
from sitewatch.storage.db import Database
from sitewatch.storage.view_state import ViewStateMirror, ViewStateStore
from sitewatch.util.logging import get_logger, setup_logging
from sitewatch.util.security import SecretStore

logger = get_logger(__name__)


def resolve_api_key(secret_store: SecretStore) -> str | None:
    """Environment wins over the stored key so deployments can override it."""
    return os.environ.get(GEMINI_API_KEY_ENV) or secret_store.get(GEMINI_SECRET_NAME)


@dataclass
class SiteWatchState:
    settings_store: SettingsStore
    log_level: str
    db: Database
    view_state: ViewStateStore
    secret_store: SecretStore
    devices: DeviceRegistry
    notifications: NotificationCenter
    aggregator: DetectionAggregator
    manager: CameraManager
    scheduler: AnalysisScheduler
    client: AnalysisClient
    chats: ChatSessionRegistry
    data_dir: Path
    _shutdown_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _shutdown_complete: bool = field(default=False, init=False, repr=False)

    @classmethod
    def create(
        cls,
        data_dir: str | None = None,
        bind: str | None = None,
        port: int | None = None,
        log_level: str = "info",
        backend: MediaBackend | None = None,
        client: AnalysisClient | None = None,
    ) -> "SiteWatchState":
        settings_store = SettingsStore(cli_data_dir=data_dir)

        updates: dict[str, Any] = {}
        if bind:
            updates["bind"] = bind
        if port:
            updates["port"] = port
        if updates:
            settings_store.update(**updates)
        settings = settings_store.settings

        tree = settings_store.data_tree
        data_path = tree.root
        setup_logging(log_level, data_path)

        secret_store = SecretStore(data_path)
        db = Database(tree.db_path)
        view_state = ViewStateStore(db)

        backend = backend or OpenCVMediaBackend()
        if client is None:
            client = GeminiClient(
                api_key=resolve_api_key(secret_store),
                model=settings.gemini_model,
                base_url=settings.gemini_base_url,
                timeout=settings.analysis_timeout_seconds,
            )

        notifications = NotificationCenter()
        aggregator = DetectionAggregator(notifications=notifications, limit=settings.history_limit)
        manager = CameraManager(
            backend,
            aggregator,
            notifications=notifications,
            capture_width=settings.capture_width,
            capture_height=settings.capture_height,
        )
        scheduler = AnalysisScheduler(
            manager,
            client,
            aggregator,
            notifications=notifications,
            interval_ms=settings.analysis_interval_ms,
            timeout=settings.analysis_timeout_seconds,
            ai_enabled=settings.ai_detection_enabled,
        )

        mirror = ViewStateMirror(view_state, manager, aggregator)
        mirror.restore()
        mirror.attach()

        if not client.configured:
            logger.info("no Gemini API key configured; periodic analysis will skip until one is set")

        return cls(
            settings_store=settings_store,
            log_level=log_level,
            db=db,
            view_state=view_state,
            secret_store=secret_store,
            devices=DeviceRegistry(backend),
            notifications=notifications,
            aggregator=aggregator,
            manager=manager,
            scheduler=scheduler,
            client=client,
            chats=ChatSessionRegistry(client),
            data_dir=data_path,
        )

    def set_api_key(self, api_key: str | None) -> None:
        if api_key:
            self.secret_store.store(GEMINI_SECRET_NAME, api_key)
        else:
            self.secret_store.delete(GEMINI_SECRET_NAME)
        if isinstance(self.client, GeminiClient):
            self.client.api_key = resolve_api_key(self.secret_store)

    def shutdown(self) -> None:
        with self._shutdown_lock:
            if self._shutdown_complete:
                return
            self._shutdown_complete = True
        self.manager.shutdown()
        self.client.close()
        self.db.close()


def create_app(
    data_dir: str | None = None,
    bind: str | None = None,
    port: int | None = None,
    log_level: str = "info",
    backend: MediaBackend | None = None,
    client: AnalysisClient | None = None,
) -> FastAPI:
    state = SiteWatchState.create(
        data_dir=data_dir,
        bind=bind,
        port=port,
        log_level=log_level,
        backend=backend,
        client=client,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            app.state.sitewatch.shutdown()

    app = FastAPI(title="SiteWatch", version=__version__, lifespan=lifespan)
    app.state.sitewatch = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes_health.router, prefix="/api")
    app.include_router(routes_devices.router, prefix="/api")
    app.include_router(routes_cameras.router, prefix="/api")
    app.include_router(routes_detections.router, prefix="/api")
    app.include_router(routes_notifications.router, prefix="/api")
    app.include_router(routes_settings.router, prefix="/api")
    app.include_router(routes_chat.router, prefix="/api")
    return app
