import os

from pydantic_settings import BaseSettings

from shared.database import build_database_url


class Settings(BaseSettings):
    """Application settings."""

    kafka_bootstrap_servers: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
    kafka_enabled: bool = os.getenv("KAFKA_ENABLED", "true").lower() == "true"
    kafka_group_id: str = os.getenv("KAFKA_GROUP_ID", "inventory-service-group")

    postgres_user: str = os.getenv("POSTGRES_USER", "postgres")
    postgres_password: str = os.getenv("POSTGRES_PASSWORD", "postgres")
    postgres_host: str = os.getenv("POSTGRES_HOST", "localhost")
    postgres_port: str = os.getenv("POSTGRES_PORT", "5432")
    postgres_db: str = os.getenv("POSTGRES_DB", "kafka_ecom")
    # Overrides the postgres_* parts when set (e.g. sqlite:///./inventory.db)
    database_url: str = os.getenv("DATABASE_URL", "")

    redis_host: str = os.getenv("REDIS_HOST", "localhost")
    redis_port: int = int(os.getenv("REDIS_PORT", "6379"))
    redis_db: int = int(os.getenv("REDIS_DB", "0"))

    # Upper bound on how long a missed invalidation can keep a snapshot alive
    availability_cache_ttl_seconds: int = int(os.getenv("AVAILABILITY_CACHE_TTL_SECONDS", "5"))
    reservation_timeout_seconds: float = float(os.getenv("RESERVATION_TIMEOUT_SECONDS", "5"))

    default_low_stock_threshold: int = int(os.getenv("DEFAULT_LOW_STOCK_THRESHOLD", "10"))
    default_location: str = os.getenv("DEFAULT_LOCATION", "MAIN_WAREHOUSE")

    seed_on_startup: bool = os.getenv("SEED_ON_STARTUP", "true").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_timezone: str = os.getenv("LOG_TIMEZONE", "UTC")
    inventory_service_port: int = int(os.getenv("INVENTORY_SERVICE_PORT", "8004"))

    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return build_database_url(
            self.postgres_user,
            self.postgres_password,
            self.postgres_host,
            self.postgres_port,
            self.postgres_db,
        )


settings = Settings()
