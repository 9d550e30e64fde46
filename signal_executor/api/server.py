"""
Webhook HTTP surface.

    GET  /          -> "OK" (liveness)
    GET  /health    -> JSON status and uptime
    GET  /accounts  -> account readiness per registered exchange
    POST /          -> handle one alert, plain-text outcome

The reconciliation runs to completion before POST / responds.
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from signal_executor import __version__
from signal_executor.monitoring.logger import get_logger
from signal_executor.services.alert_service import AlertOutcome, AlertService

logger = get_logger(__name__)

_RESPONSE_TEXT = {
    AlertOutcome.OK: "OK",
    AlertOutcome.DUPLICATE: "duplicate",
    AlertOutcome.INVALID: "Error. alert message is not valid",
    AlertOutcome.UNSUPPORTED_EXCHANGE: "Error. exchange is not supported",
    AlertOutcome.ERROR: "error",
}


def create_app(service: AlertService) -> FastAPI:
    """FastAPI app bound to one AlertService; the service is closed on shutdown."""
    started = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await service.close()

    app = FastAPI(title="Signal Executor", version=__version__, lifespan=lifespan)
    app.state.service = service

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "OK"

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "version": __version__,
            "uptime_seconds": int(time.time() - started),
            "exchanges": service.registry.keys(),
        }

    @app.get("/accounts")
    async def accounts():
        return JSONResponse(content=await service.accounts())

    @app.post("/", response_class=PlainTextResponse)
    async def receive_alert(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("ALERT_BODY_NOT_JSON", content_type=request.headers.get("content-type"))
            payload = None

        outcome = await service.handle_alert(payload)
        return PlainTextResponse(_RESPONSE_TEXT[outcome], status_code=outcome.http_status)

    return app
