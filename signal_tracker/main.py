"""
Main application entry point.

This module wires the signal tracker services together and exposes them
over HTTP.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from signal_tracker.config import AppConfig, get_config
from signal_tracker.core.domain.signal import SignalCategory
from signal_tracker.core.scoring.scoring_engine import ScoringEngine
from signal_tracker.data.flow_provider import BlockchainInfoFlowSource
from signal_tracker.data.providers import PriceFeed
from signal_tracker.data.simulated_provider import SimulatedPriceFeed
from signal_tracker.data.yfinance_provider import YFinancePriceFeed
from signal_tracker.notifications.notification_service import (
    CompositeNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
)
from signal_tracker.notifications.telegram_service import TelegramNotificationService
from signal_tracker.services.auto_generator import AutoGenerator, GenerationConfig
from signal_tracker.services.catchup_service import CatchUpService
from signal_tracker.services.monitor_service import SignalMonitor
from signal_tracker.store.backends import KeyValueBackend, create_backend
from signal_tracker.store.signal_store import SignalStore, accuracy_report
from signal_tracker.utils.error_handler import ErrorHandler
from signal_tracker.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the HTTP layer and background tasks share"""
    config: AppConfig
    backend: KeyValueBackend
    store: SignalStore
    engine: ScoringEngine
    price_feed: PriceFeed
    notifier: NotificationSink
    monitor: SignalMonitor
    catchup: CatchUpService
    generator: AutoGenerator


def build_services(
    config: AppConfig,
    price_feed: Optional[PriceFeed] = None,
    backend: Optional[KeyValueBackend] = None,
) -> Services:
    """
    Construct the service graph from configuration.

    Args:
        config: Application configuration
        price_feed: Overrides the configured price feed
        backend: Overrides the configured store backend

    Returns:
        Wired services (nothing is started)
    """
    backend = backend or create_backend(config.store.url)
    store = SignalStore(backend)

    sinks = [LoggingNotificationSink()]
    if config.telegram.enabled:
        sinks.append(TelegramNotificationService(
            bot_token=config.telegram.bot_token,
            chat_id=config.telegram.chat_id,
            timezone=config.timezone,
        ))
    notifier = CompositeNotificationSink(sinks)

    flow_source = None
    if price_feed is None:
        if config.price_feed == "simulated":
            price_feed = SimulatedPriceFeed()
        else:
            price_feed = YFinancePriceFeed()
            flow_source = BlockchainInfoFlowSource(timeout_seconds=config.generator.fetch_timeout_seconds)

    engine = ScoringEngine(
        flow_source=flow_source,
        collaborator_timeout=config.generator.collaborator_timeout_seconds,
    )
    error_handler = ErrorHandler(notifier)

    return Services(
        config=config,
        backend=backend,
        store=store,
        engine=engine,
        price_feed=price_feed,
        notifier=notifier,
        monitor=SignalMonitor(store, price_feed, notifier, config.monitor, error_handler=error_handler),
        catchup=CatchUpService(store, price_feed, notifier, config.monitor),
        generator=AutoGenerator(store, engine, price_feed, notifier, config.generator),
    )


def create_app(
    config: Optional[AppConfig] = None,
    price_feed: Optional[PriceFeed] = None,
    run_background: bool = True,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Application configuration (loaded from the environment if omitted)
        price_feed: Overrides the configured price feed
        run_background: Start the monitor and resume auto-generation on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Handles startup and shutdown events.
        """
        # Startup
        logger.info("=" * 60)
        logger.info("Signal Tracker Starting...")
        logger.info("=" * 60)

        error_handler = ErrorHandler()
        try:
            app_config = config or get_config()
            setup_logging(app_config.log_level, app_config.log_structured)
            logger.info("✓ Configuration loaded")

            services = build_services(app_config, price_feed)
            logger.info(f"✓ Store ready ({'memory' if app_config.store.in_memory else 'sql'})")
        except Exception as e:
            await error_handler.handle_startup_error("Startup", e)

        app.state.services = services

        report = await services.catchup.run()
        logger.info(f"✓ Catch-up reconciled {report.checked} signals ({report.archived} archived)")

        if run_background:
            services.monitor.start()
            await services.generator.resume_from_preferences()
            logger.info("✓ Background services started")
            logger.info(f"  - Monitor: every {app_config.monitor.interval_seconds}s")

        logger.info("=" * 60)
        logger.info("Signal Tracker Started Successfully")
        logger.info("=" * 60)

        yield

        # Shutdown
        logger.info("Stopping background services...")
        await services.generator.stop_all()
        await services.monitor.stop()
        close = getattr(services.backend, "close", None)
        if close is not None:
            close()
        logger.info("Signal Tracker Shutting Down...")

    app = FastAPI(
        title="Signal Tracker",
        description="Trading signal synthesis and lifecycle tracking",
        version="1.0.0",
        lifespan=lifespan
    )

    def services_of(request: Request) -> Services:
        return request.app.state.services

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": "Signal Tracker",
            "version": "1.0.0",
            "status": "running"
        }

    @app.get("/health")
    async def health_check(request: Request):
        """
        Health check endpoint.

        Returns:
            JSON with health status
        """
        services = services_of(request)
        try:
            store_status = "healthy" if services.backend.ping() else "unhealthy"
        except Exception as e:
            logger.error(f"Store health check failed: {e}")
            store_status = "unhealthy"

        is_healthy = store_status == "healthy"
        response = {
            "status": "healthy" if is_healthy else "unhealthy",
            "store": store_status,
            "monitor": "running" if services.monitor.is_running else "stopped",
            "service": "running"
        }

        status_code = 200 if is_healthy else 503
        return JSONResponse(content=response, status_code=status_code)

    @app.get("/signals/active")
    async def active_signals(request: Request, category: Optional[SignalCategory] = None):
        signals = services_of(request).store.get_active(category)
        return {"count": len(signals), "signals": [s.to_record() for s in signals]}

    @app.get("/signals/completed")
    async def completed_signals(request: Request):
        signals = services_of(request).store.get_completed()
        return {"count": len(signals), "signals": [s.to_record() for s in signals]}

    @app.get("/signals/stats")
    async def signal_stats(request: Request):
        services = services_of(request)
        return {
            "completed": accuracy_report(services.store.get_completed()),
            "monitor": services.monitor.stats(),
        }

    @app.post("/generate/{category}")
    async def generate(request: Request, category: SignalCategory, generation: Optional[GenerationConfig] = None):
        """Manual generation run for one category"""
        try:
            signals = await services_of(request).generator.generate_now(category, generation)
        except Exception as e:
            logger.error(f"Manual generation failed for {category.value}: {e}", exc_info=True)
            raise HTTPException(status_code=502, detail=f"Generation failed: {e}")
        return {
            "category": category.value,
            "count": len(signals),
            "signals": [s.to_record() for s in signals],
        }

    @app.post("/autogen/{category}/start")
    async def autogen_start(request: Request, category: SignalCategory, generation: Optional[GenerationConfig] = None):
        generator = services_of(request).generator
        await generator.start(category, generation)
        return generator.status(category)

    @app.post("/autogen/{category}/stop")
    async def autogen_stop(request: Request, category: SignalCategory):
        generator = services_of(request).generator
        await generator.stop(category)
        return generator.status(category)

    @app.get("/autogen/{category}")
    async def autogen_status(request: Request, category: SignalCategory):
        return services_of(request).generator.status(category)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "signal_tracker.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
        access_log=True
    )
