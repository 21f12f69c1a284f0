import re
from pathlib import Path

import structlog
from decouple import Csv, config
from dj_database_url import parse as db_url

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = config("SECRET_KEY", default="order-to-cash-dev-only")

DEBUG = config("DEBUG", default=False, cast=bool)

ALLOWED_HOSTS = config("ALLOWED_HOSTS", default="127.0.0.1,localhost", cast=Csv())

# Application definition
INSTALLED_APPS = [
    "modules.core",
    "modules.offers",
    "modules.orders",
]

DATABASES = {
    "default": config(
        "DATABASE_URL", default=f'sqlite:///{BASE_DIR / "db.sqlite3"}', cast=db_url
    )
}

USE_TZ = True
TIME_ZONE = "UTC"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------------------------------------------------------------------------
# Service identity
# ---------------------------------------------------------------------------
SERVICE_NAME = config("SERVICE_NAME", default="orders-service")

# ---------------------------------------------------------------------------
# Collaborator services (resilience wrapper settings apply to all adapters)
# ---------------------------------------------------------------------------
OFFERS_SERVICE_URL = config("OFFERS_SERVICE_URL", default="http://localhost:3003")
INVENTORY_SERVICE_URL = config(
    "INVENTORY_SERVICE_URL", default="http://localhost:3004"
)
SHIPPING_SERVICE_URL = config("SHIPPING_SERVICE_URL", default="http://localhost:3005")
PAYMENT_GATEWAY_URL = config(
    "PAYMENT_GATEWAY_URL", default="https://api.stripe.com/v1"
)
PAYMENT_GATEWAY_API_KEY = config("PAYMENT_GATEWAY_API_KEY", default="")

API_TIMEOUT = config("API_TIMEOUT", default=10.0, cast=float)
MAX_RETRY_ATTEMPTS = config("MAX_RETRY_ATTEMPTS", default=3, cast=int)
RETRY_BASE_DELAY = config("RETRY_BASE_DELAY", default=1.0, cast=float)

# ---------------------------------------------------------------------------
# Order policy
# ---------------------------------------------------------------------------
AUTO_CONFIRM_ORDERS = config("AUTO_CONFIRM_ORDERS", default=False, cast=bool)
ORDER_NUMBER_PREFIX = config("ORDER_NUMBER_PREFIX", default="ORD")

# ---------------------------------------------------------------------------
# Event bus (durable topic exchange)
# ---------------------------------------------------------------------------
EVENT_BUS_URL = config("EVENT_BUS_URL", default="")
EVENT_EXCHANGE = config("EVENT_EXCHANGE", default="collector-events")

# ---------------------------------------------------------------------------
# Celery (async tasks)
# ---------------------------------------------------------------------------
CELERY_BROKER_URL = config("CELERY_BROKER_URL", default="redis://localhost:6379/0")
CELERY_RESULT_BACKEND = config(
    "CELERY_RESULT_BACKEND", default="redis://localhost:6379/0"
)
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    "expire-overdue-offers": {
        "task": "offers.expire_overdue_offers",
        "schedule": config("OFFER_EXPIRY_INTERVAL", default=300.0, cast=float),
    },
}

# ---------------------------------------------------------------------------
# Structured Logging (structlog + Django LOGGING)
# ---------------------------------------------------------------------------
SENSITIVE_PATTERN = re.compile(
    r"(\b\d{13,19}\b)"  # card numbers
    r"|(password|passwd|secret|token|authorization|api_key)"
    r"""([=:]\s*["']?)([^\s,}"']+)""",
    re.IGNORECASE,
)


def mask_sensitive_data(_, __, event_dict):
    """Processor that masks card numbers, secrets and tokens in log values."""
    for key, value in list(event_dict.items()):
        if isinstance(value, str):
            event_dict[key] = SENSITIVE_PATTERN.sub("***MASKED***", value)
    return event_dict


# Shared processors used by both structlog and stdlib logging
_shared_processors = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    mask_sensitive_data,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]

structlog.configure(
    processors=[
        *_shared_processors,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processors": [
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            "foreign_pre_chain": _shared_processors,
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "kombu": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}
