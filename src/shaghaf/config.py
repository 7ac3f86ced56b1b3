"""
Runtime Configuration

Everything is read from the environment, with defaults suitable for a
single-branch development install.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional
import structlog

from .core.money import DEFAULT_CURRENCY, to_minor
from .core.pricing import PricingPolicy


def _env_bool(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).lower() in ("1", "true", "yes")


@dataclass
class ShaghafConfig:
    """Settings for the billing service."""
    pricing: PricingPolicy
    currency: str = DEFAULT_CURRENCY
    database_url: str = "sqlite:///shaghaf.db"
    api_key: str = "dev-key-change-in-production"
    cors_origins: list = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "ShaghafConfig":
        """
        Rates are given in major units (SHAGHAF_FIRST_HOUR_RATE=40 means
        40.00); they are stored as minor units.
        """
        pricing = PricingPolicy(
            first_hour_rate=to_minor(os.environ.get("SHAGHAF_FIRST_HOUR_RATE", "40")),
            additional_hour_rate=to_minor(os.environ.get("SHAGHAF_ADDITIONAL_HOUR_RATE", "30")),
            max_additional_charge=to_minor(os.environ.get("SHAGHAF_MAX_ADDITIONAL_CHARGE", "100")),
        )
        return cls(
            pricing=pricing,
            currency=os.environ.get("SHAGHAF_CURRENCY", DEFAULT_CURRENCY),
            database_url=os.environ.get("DATABASE_URL", "sqlite:///shaghaf.db"),
            api_key=os.environ.get("API_KEY", "dev-key-change-in-production"),
            cors_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON"),
        )


def configure_logging(level: str = "INFO", json_output: Optional[bool] = None) -> None:
    """Route structlog through stdlib logging with console or JSON rendering."""
    if json_output is None:
        json_output = _env_bool("LOG_JSON")

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=numeric_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
