"""Shared test fixtures and configuration."""

import os
import pytest
from typing import Dict, Any, Optional

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYHERO_USERNAME", "test_user")
os.environ.setdefault("PAYHERO_PASSWORD", "test_password")
os.environ.setdefault("PAYHERO_CHANNEL_ID", "3407")

from payhero_sdk.config import PayHeroConfig
from payhero_sdk.connectors import PayHeroConnector, SimulatorConnector
from payhero_sdk.database import Base, create_async_engine, get_async_session_factory


@pytest.fixture
def payhero_config() -> PayHeroConfig:
    """Return a PayHero configuration pointing at a fake base URL."""
    return PayHeroConfig(
        username="test_user",
        password="test_password",
        channel_id=3407,
        base_url="https://payhero.test/api/v2",
        callback_url="https://merchant.test/callbacks/payhero",
        timeout_seconds=5.0,
    )


@pytest.fixture
def payhero_connector(payhero_config) -> PayHeroConnector:
    """Create a PayHeroConnector instance."""
    return PayHeroConnector(payhero_config)


@pytest.fixture
def simulator() -> SimulatorConnector:
    """Create a fresh simulator connector."""
    return SimulatorConnector()


@pytest.fixture
def make_callback():
    """Return a builder for PayHero callback payloads."""
    def _make(
        reference: str,
        amount: Any = 60,
        result_code: int = 0,
        status: str = "Success",
        receipt: Optional[str] = "SAE3YULR0Y",
        checkout_request_id: str = "ws_CO_16022024_123456789",
    ) -> Dict[str, Any]:
        return {
            "forward_url": "",
            "status": result_code == 0,
            "response": {
                "Amount": amount,
                "CheckoutRequestID": checkout_request_id,
                "ExternalReference": reference,
                "MerchantRequestID": "3202-70921557-1",
                "MpesaReceiptNumber": receipt,
                "Phone": "254712345678",
                "ResultCode": result_code,
                "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
                "Status": status,
            },
        }
    return _make


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    """Return headers with authentication."""
    return {"Authorization": f"Bearer {os.environ['API_KEY']}"}


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine."""
    return get_async_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session
