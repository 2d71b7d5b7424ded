from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from holdledger.config import Settings
from holdledger.coordinator import ReconciliationCoordinator
from holdledger.database import make_engine, make_session_factory
from holdledger.errors import WebhookError
from holdledger.ledger import LedgerStore
from holdledger.logs import configure_logging
from holdledger.routes import router
from holdledger.stripe_service import StripeGateway
from holdledger.sweeper import StuckAuthorizationSweeper
from holdledger.webhooks import WebhookDispatcher, decode_event


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    logger = structlog.get_logger().bind(component="app")

    for name in ("stripe_secret_key", "stripe_webhook_secret", "jwt_secret"):
        if not getattr(settings, name):
            logger.warning("missing_setting", setting=name.upper())

    engine = make_engine(settings.database_url)
    ledger = LedgerStore(engine, make_session_factory(engine))
    gateway = StripeGateway(settings)
    coordinator = ReconciliationCoordinator(ledger, gateway)
    sweeper = StuckAuthorizationSweeper(
        ledger,
        coordinator,
        max_age_seconds=settings.authorization_timeout_seconds,
        interval_seconds=settings.sweep_interval_seconds,
        startup_delay_seconds=settings.sweep_startup_delay_seconds,
    )

    app.state.ledger = ledger
    app.state.gateway = gateway
    app.state.coordinator = coordinator
    app.state.dispatcher = WebhookDispatcher(coordinator)
    app.state.sweeper = sweeper

    sweeper.start()
    logger.info("service_started", records=len(ledger))
    try:
        yield
    finally:
        sweeper.stop()
        engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="Payment Hold Reconciliation Service", lifespan=lifespan)
    app.state.settings = settings
    app.include_router(router)

    @app.post("/stripe/webhook")
    async def stripe_webhook(request: Request, stripe_signature: str = Header(None)):
        payload = await request.body()

        try:
            event = decode_event(payload, stripe_signature, request.app.state.settings.stripe_webhook_secret)
        except WebhookError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        # Settlement may call Stripe; keep it off the event loop
        await run_in_threadpool(request.app.state.dispatcher.dispatch, event)
        return {"received": True}

    return app


app = create_app()
