"""Starlette application setup for the fleet dashboard API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from fleet_dashboard.credentials.clock import Clock, default_clock
from fleet_dashboard.credentials.errors import StoreUnavailable
from fleet_dashboard.credentials.models import KindPolicy, PrincipalKind
from fleet_dashboard.credentials.registration import RegistrationIssuer
from fleet_dashboard.credentials.service import CredentialLifecycleManager
from fleet_dashboard.credentials.store import DiskCredentialStore, MemoryCredentialStore
from fleet_dashboard.servers.auth import build_auth_routes
from fleet_dashboard.servers.context import MainAppContext
from fleet_dashboard.servers.correlation import CorrelationIdMiddleware
from fleet_dashboard.utils.environment import Settings
from fleet_dashboard.utils.logging import setup_logging

logger = logging.getLogger("fleet-dashboard.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def build_context(settings: Settings, *, clock: Clock = default_clock) -> MainAppContext:
    """Construct stores and engines once for the lifetime of the process."""
    stores: dict[PrincipalKind, DiskCredentialStore | MemoryCredentialStore] = {}
    for kind in PrincipalKind:
        if settings.store_backend == "memory":
            stores[kind] = MemoryCredentialStore(kind)
        else:
            stores[kind] = DiskCredentialStore(kind, base_dir=settings.storage_dir)

    ttls = {
        PrincipalKind.ADMIN: settings.admin_access_ttl_millis,
        PrincipalKind.USER: settings.user_access_ttl_millis,
    }
    managers = {
        kind: CredentialLifecycleManager(
            KindPolicy(
                kind=kind,
                access_ttl_millis=ttls[kind],
                detach_expiry_deletes=settings.detach_expiry_deletes,
            ),
            principals=stores[kind],
            tokens=stores[kind],
            clock=clock,
        )
        for kind in PrincipalKind
    }
    registration = RegistrationIssuer(
        managers[PrincipalKind.ADMIN],
        stores[PrincipalKind.USER],
        user_directory=stores[PrincipalKind.USER],
        ttl_millis=settings.registration_ttl_millis,
        reject_existing=settings.reject_existing_users,
        clock=clock,
    )
    return MainAppContext(
        managers=managers,
        registration=registration,
        user_directory=stores[PrincipalKind.USER],
        sweep_interval_seconds=settings.sweep_interval_seconds,
    )


async def sweep_once(context: MainAppContext) -> int:
    """Run one expiry sweep over every namespace; return tokens removed."""
    removed = 0
    for manager in context.managers.values():
        removed += await manager.sweep_expired()
    removed += await context.registration.sweep_expired()
    return removed


async def _sweep_forever(context: MainAppContext) -> None:
    interval = context.sweep_interval_seconds
    logger.info("Expired-token sweep running every %ss", interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_once(context)
        except StoreUnavailable as exc:
            logger.warning("Expired-token sweep skipped: %s", exc)


def create_app(
    settings: Settings | None = None,
    *,
    context: MainAppContext | None = None,
    clock: Clock = default_clock,
) -> Starlette:
    """Return the ASGI application.

    Pass *context* to inject pre-built engines (tests); otherwise they are
    built from *settings* (default: :meth:`Settings.from_env`) at startup.
    """

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Fleet dashboard lifespan starting...")
        app_context = context
        if app_context is None:
            resolved = settings or Settings.from_env()
            app_context = build_context(resolved, clock=clock)
            logger.info("Credential store backend: %s", resolved.store_backend)
        app.state.credentials = app_context

        sweeper: asyncio.Task[None] | None = None
        if app_context.sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(_sweep_forever(app_context))
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with suppress(asyncio.CancelledError):
                    await sweeper
            for manager in app_context.managers.values():
                await manager.drain()
            logger.info("Fleet dashboard lifespan shutdown complete.")

    routes = [Route("/health", health_check, methods=["GET"]), *build_auth_routes()]
    app = Starlette(
        routes=routes,
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    if context is not None:
        # transports that skip lifespan events still see the injected engines
        app.state.credentials = context
    return app


def main() -> None:
    """Console entry point: serve the API with uvicorn."""
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
