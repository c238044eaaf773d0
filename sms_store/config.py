"""sms-store configuration.

This module only reads environment variables (a local `.env` file is loaded
first, if present). Everything has a development default; in Docker or on a
server you override them with environment variables.

`validate()` is called once at startup. An empty required value aborts the
service before it connects to anything.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv()

# --- HTTP server -------------------------------------------------------------
SERVER_PORT: int = int(os.getenv("SERVER_PORT", os.getenv("GO_SERVICE_PORT", "8090")))

# --- MongoDB -----------------------------------------------------------------
MONGO_HOST: str = os.getenv("MONGO_HOST", "mongodb")
MONGO_PORT: str = os.getenv("MONGO_PORT", "27017")
MONGO_DATABASE: str = os.getenv("MONGO_DATABASE", "sms_store")
MONGO_USER: str = os.getenv("MONGO_APP_USER", "smsapp")
MONGO_PASSWORD: str = os.getenv("MONGO_APP_PASSWORD", "smsapp123")
MONGO_COLLECTION: str = os.getenv("MONGO_COLLECTION", "sms_records")

# The application user is created in the service database, so that database is
# also the authSource. Set MONGO_URI to bypass the assembly entirely.
MONGO_URI: str = os.getenv(
    "MONGO_URI",
    f"mongodb://{MONGO_USER}:{MONGO_PASSWORD}@{MONGO_HOST}:{MONGO_PORT}"
    f"/{MONGO_DATABASE}?authSource={MONGO_DATABASE}",
)

# --- Kafka -------------------------------------------------------------------
# Comma-separated broker list, passed to librdkafka as-is.
KAFKA_BROKERS: str = os.getenv("KAFKA_BROKERS", "kafka:9092")
KAFKA_TOPIC: str = os.getenv("KAFKA_TOPIC", "sms.events")

# Committed offsets belong to the group: restarting with the same group id
# resumes after the last committed message.
KAFKA_GROUP_ID: str = os.getenv("KAFKA_GROUP_ID", "sms-store-consumer-group")

# Where a brand new group starts: "latest" (only new events) or "earliest".
KAFKA_AUTO_OFFSET_RESET: str = os.getenv("KAFKA_AUTO_OFFSET_RESET", "latest")

# --- Logging -----------------------------------------------------------------
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Timeouts (seconds) ------------------------------------------------------
INSERT_TIMEOUT: float = 5.0
QUERY_TIMEOUT: float = 10.0
HEALTH_TIMEOUT: float = 2.0
CONNECT_PING_TIMEOUT: float = 5.0
SERVER_SELECTION_TIMEOUT: float = 10.0

FETCH_TIMEOUT: float = 10.0
FETCH_BACKOFF: float = 1.0
COMMIT_TIMEOUT: float = 5.0
STOP_GRACE_PERIOD: float = 1.0


def validate() -> None:
    """Raise ConfigError if any required setting is empty."""
    required = {
        "SERVER_PORT": SERVER_PORT,
        "MONGO_URI": MONGO_URI,
        "MONGO_DATABASE": MONGO_DATABASE,
        "MONGO_COLLECTION": MONGO_COLLECTION,
        "KAFKA_BROKERS": KAFKA_BROKERS.strip(","),
        "KAFKA_TOPIC": KAFKA_TOPIC,
        "KAFKA_GROUP_ID": KAFKA_GROUP_ID,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise ConfigError(f"missing required configuration: {', '.join(missing)}")
