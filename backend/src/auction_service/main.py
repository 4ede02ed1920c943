import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auction_service.api.v1 import auctions, bids, notifications, orders, ws
from auction_service.core.config import settings
from auction_service.core.database import dispose_engine
from auction_service.core.exceptions import AuctionServiceError
from auction_service.core.logging import setup_logging
from auction_service.core.redis import close_redis, get_redis
from auction_service.middleware.metrics import PrometheusMiddleware, metrics_endpoint
from auction_service.services.closer import CloserLeadership
from auction_service.services.container import Services, build_services
from auction_service.services.redis_service import RedisService
from auction_service.services.ws_manager import push_notification
from auction_service.stores import create_store

logger = logging.getLogger(__name__)

# Background task control
_closer_task: asyncio.Task | None = None
_finalizer_task: asyncio.Task | None = None


async def closer_loop(services: Services, leadership: CloserLeadership):
    """Background task to open due auctions and close expired ones."""
    while True:
        try:
            if await leadership.is_leader():
                closed = await services.closer.run_once()
                if closed:
                    logger.info(f"Closer tick closed {closed} auctions")

            await asyncio.sleep(settings.CLOSER_INTERVAL_SECONDS)

        except asyncio.CancelledError:
            logger.info("Closer loop cancelled")
            break
        except Exception as e:
            logger.error(f"Error in closer loop: {e}")
            await asyncio.sleep(settings.CLOSER_INTERVAL_SECONDS)


async def finalizer_loop(services: Services):
    """Background task to retry failed auction finalizations."""
    while True:
        try:
            completed = await services.finalizer.retry_due()
            if completed:
                logger.info(f"Finalized {completed} auctions on retry")

            await asyncio.sleep(settings.FINALIZER_INTERVAL_SECONDS)

        except asyncio.CancelledError:
            logger.info("Finalizer loop cancelled")
            break
        except Exception as e:
            logger.error(f"Error in finalizer loop: {e}")
            await asyncio.sleep(settings.FINALIZER_INTERVAL_SECONDS)


async def drain_services(services: Services, timeout: float) -> None:
    """Deliver post-commit events and queued notifications before shutdown.

    The fan-out workers must still be running.
    """

    async def _drain() -> None:
        await services.bids.drain()
        await services.notifications.drain()

    try:
        await asyncio.wait_for(_drain(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(
            f"Shutdown drain timed out after {timeout}s, "
            f"{services.notifications.queue.qsize()} notifications still queued"
        )


async def _cancel(task: asyncio.Task | None) -> None:
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    global _closer_task, _finalizer_task

    setup_logging()
    logger.info(f"Starting application with {settings.AUCTION_STORE} store...")

    redis = await get_redis()
    redis_service = RedisService(redis) if redis is not None else None
    if redis_service is None:
        logger.warning("Redis disabled: per-auction locks are process-local")

    store = create_store()
    services = build_services(store, redis_service, pusher=push_notification)
    app.state.services = services

    leadership = CloserLeadership(
        redis_service, ttl=max(int(settings.CLOSER_INTERVAL_SECONDS * 3), 1)
    )

    logger.info("Starting background tasks...")
    services.notifications.start()
    _closer_task = asyncio.create_task(closer_loop(services, leadership))
    _finalizer_task = asyncio.create_task(finalizer_loop(services))

    yield

    # Shutdown
    logger.info("Stopping background tasks")
    await _cancel(_closer_task)
    await _cancel(_finalizer_task)
    await leadership.resign()
    await drain_services(services, settings.SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
    await services.notifications.stop()
    await store.close()
    await close_redis()
    await dispose_engine()


app = FastAPI(
    title="Auction Service",
    version="1.0.0",
    description="Auction bidding, closing and notification service",
    lifespan=lifespan,
)

# Prometheus Metrics Middleware (must be first to capture all requests)
app.add_middleware(PrometheusMiddleware)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuctionServiceError)
async def auction_error_handler(request: Request, exc: AuctionServiceError) -> JSONResponse:
    """Render service errors as ``{"detail": {"code", "message", ...}}``."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


# Include API routers
app.include_router(auctions.router, prefix="/api/v1/auctions", tags=["auctions"])
app.include_router(bids.router, prefix="/api/v1/bids", tags=["bids"])
app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["notifications"])
app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])

# WebSocket router (no prefix, endpoint is /ws/auctions/{auction_id})
app.include_router(ws.router, tags=["websocket"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# Prometheus metrics endpoint
app.add_route("/metrics", metrics_endpoint)
