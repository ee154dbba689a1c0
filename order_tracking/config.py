import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # Database. Empty -> local JSON store
    POSTGRES_CONNECTION_STRING: str = os.getenv("POSTGRES_CONNECTION_STRING", "")
    LOCAL_STORE_PATH: str = os.getenv("LOCAL_STORE_PATH", "orders.json")

    # Orders
    ORDER_NUMBER_PREFIX: str = os.getenv("ORDER_NUMBER_PREFIX", "HMP")
    STORAGE_MAX_RETRIES: int = int(os.getenv("STORAGE_MAX_RETRIES", "3"))
    STORAGE_RETRY_DELAY: float = float(os.getenv("STORAGE_RETRY_DELAY", "0.2"))

    # Kafka. Empty -> no event fan-out
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "")
    ORDER_EVENTS_TOPIC: str = os.getenv("ORDER_EVENTS_TOPIC", "storefront.order.events")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def USE_DATABASE(self) -> bool:
        return bool(self.POSTGRES_CONNECTION_STRING)

    @property
    def DATABASE_URL(self) -> str:
        """Async URL for the application"""
        url = self.POSTGRES_CONNECTION_STRING
        for scheme in ("postgres://", "postgresql://"):
            if url.startswith(scheme):
                return "postgresql+asyncpg://" + url[len(scheme):]
        return url

    @property
    def SYNC_DATABASE_URL(self) -> str:
        """Sync URL for Alembic"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql://")


settings = Settings()
