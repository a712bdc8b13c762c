"""FastAPI dependencies for objects built once at startup."""

from typing import Optional

from fastapi import HTTPException, Request

from .config import PayHeroConfig, DEFAULT_POLL_GRACE_SECONDS, DEFAULT_USD_KES_RATE
from .connectors.base import ConnectorBase


def get_config(request: Request) -> Optional[PayHeroConfig]:
    return getattr(request.app.state, "config", None)


def get_connector(request: Request) -> ConnectorBase:
    """Return the gateway connector created by the app lifespan.

    Raises:
        HTTPException: 503 if the app started without a connector.
    """
    connector = getattr(request.app.state, "connector", None)
    if connector is None:
        raise HTTPException(status_code=503, detail="Payment gateway not configured")
    return connector


def get_usd_kes_rate(request: Request) -> float:
    config = get_config(request)
    return config.usd_kes_rate if config else DEFAULT_USD_KES_RATE


def get_poll_grace_seconds(request: Request) -> int:
    config = get_config(request)
    return config.poll_grace_seconds if config else DEFAULT_POLL_GRACE_SECONDS
