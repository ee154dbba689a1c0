import logging
import sys
from contextlib import asynccontextmanager
from fastapi import FastAPI

from order_tracking.config import Settings, settings as default_settings
from order_tracking.database import build_unit_of_work, create_tables
from order_tracking.application.subscriptions import OrderUpdateBroker
from order_tracking.infrastructure.kafka_producer import KafkaOrderEventsPublisher
from order_tracking.presentation.api import router


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


logger = logging.getLogger(__name__)


def create_app(settings: Settings = default_settings, unit_of_work=None, kafka_publisher=None) -> FastAPI:
    """unit_of_work / kafka_publisher override what settings would build (tests)"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        uow = unit_of_work
        if uow is None:
            uow, engine = build_unit_of_work(settings)
            if engine is not None:
                await create_tables(engine)
                logger.info("Tables ready")

        broker = OrderUpdateBroker()
        publishers = [broker]

        kafka = kafka_publisher
        if kafka is None and settings.KAFKA_BOOTSTRAP_SERVERS:
            kafka = KafkaOrderEventsPublisher(settings.KAFKA_BOOTSTRAP_SERVERS, settings.ORDER_EVENTS_TOPIC)
        if kafka is not None:
            await kafka.start()
            publishers.append(kafka)

        app.state.settings = settings
        app.state.unit_of_work = uow
        app.state.broker = broker
        app.state.publishers = publishers

        yield

        logger.info("Shutting down order tracking service")
        if kafka is not None:
            await kafka.stop()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="Order Tracking Service",
        description="Order lifecycle, status timeline and live tracking",
        version="1.0.0",
        lifespan=lifespan
    )
    app.include_router(router, prefix="/api")

    @app.get("/")
    async def root():
        return {"message": "Order tracking service is running"}

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "store": "postgres" if settings.USE_DATABASE else "local",
            "kafka": "enabled" if (kafka_publisher is not None or settings.KAFKA_BOOTSTRAP_SERVERS) else "disabled",
        }

    return app


configure_logging(default_settings.LOG_LEVEL)
app = create_app()
