# Application Configuration using Pydantic BaseSettings
import logging
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    # MongoDB
    MONGO_DETAILS: str = "mongodb://mongo:27017"
    DB_NAME: str = "declaration_db"

    # Declaration Store implementation: "mongo" for production, "memory" for local runs and tests
    DECLARATION_STORE_BACKEND: Literal["mongo", "memory"] = "mongo"

    # Kafka (lifecycle events are only published when bootstrap servers are set)
    KAFKA_BOOTSTRAP_SERVERS: Optional[str] = None
    DECLARATION_EVENTS_TOPIC: str = "declaration_events"

    # External Verification Service (geometry + satellite checks)
    VERIFICATION_SERVICE_URL: Optional[str] = None # e.g., http://verification:8090/api/v1
    VERIFICATION_STAGE_TIMEOUT_SECONDS: float = 30.0

    # Wizard sessions (idle wizards are closed; finished ones keep a read-only snapshot)
    WIZARD_IDLE_TTL_SECONDS: Optional[float] = 3600.0
    WIZARD_EXPIRY_SWEEP_SECONDS: float = 60.0
    WIZARD_FINISHED_SNAPSHOTS: int = 256

    # Shared HTTP client
    DEFAULT_HTTP_TIMEOUT: float = 10.0

    # Observability
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: Optional[str] = None
    OTEL_EXPORTER_OTLP_METRICS_ENDPOINT: Optional[str] = None
    SERVICE_NAME_API: str = "declaration-api"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

# Instantiate settings to be imported by other modules
settings = AppSettings()

logger = logging.getLogger(__name__)
logger.info("Application settings module initialized.")
