from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .container import ApplicationContainer
from .logging import configure_logging
from ..application.services.access_service import AccessService
from ..application.services.admin_auth_service import AdminAuthService
from ..application.services.assignment_service import AssignmentService
from ..application.services.reconciliation_service import ReconciliationService, ReconciliationWorker
from ..application.services.statistics_service import StatisticsService
from ..application.services.subscription_update_service import SubscriptionUpdateService
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..presentation.api.routers import access as access_router
from ..presentation.api.routers import admin as admin_router
from ..presentation.api.routers import checkout as checkout_router
from ..presentation.api.routers import subscriptions as subscriptions_router

logger = logging.getLogger(__name__)


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="Subscription Lifecycle Service", lifespan=_create_lifespan(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(admin_router.router)
    app.include_router(subscriptions_router.router)
    app.include_router(checkout_router.router)
    app.include_router(access_router.router)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        container: ApplicationContainer = app.state.container  # type: ignore[attr-defined]
        return {"ok": True, "reconciliation": container.reconciliation_worker.running}

    return app


def build_container(settings: Settings) -> ApplicationContainer:
    persistence = SQLitePersistence(settings.database_path)
    admin_auth_service = AdminAuthService(
        users=persistence,
        secret_key=settings.admin_token_secret,
        token_exp_minutes=settings.admin_token_exp_minutes,
    )
    admin_auth_service.ensure_default_admin(settings.admin_default_email, settings.admin_default_password)
    reconciliation_service = ReconciliationService(persistence)
    return ApplicationContainer(
        settings=settings,
        persistence=persistence,
        admin_auth_service=admin_auth_service,
        update_service=SubscriptionUpdateService(persistence, strict_extend_unit=settings.strict_extend_unit),
        assignment_service=AssignmentService(persistence),
        statistics_service=StatisticsService(persistence),
        access_service=AccessService(persistence),
        reconciliation_service=reconciliation_service,
        reconciliation_worker=ReconciliationWorker(
            reconciliation_service,
            interval_seconds=settings.reconcile_interval_seconds,
        ),
    )


def _create_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        container = build_container(settings)
        app.state.container = container  # type: ignore[attr-defined]
        logger.info("Subscription service using database %s", settings.database_path)

        await container.reconciliation_worker.start()
        try:
            yield
        finally:
            await container.reconciliation_worker.stop()
            container.persistence.close()

    return lifespan
