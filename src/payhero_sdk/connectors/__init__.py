"""Mobile-money gateway connectors."""

from .base import (
    ConnectorBase,
    InitiateResult,
    StatusResult,
    CallbackResult,
    CallbackPayload,
    CallbackResponseBody,
    normalize_phone_number,
    parse_callback,
    prepare_stk_request,
)
from .payhero_connector import PayHeroConnector, mask_phone
from .simulator_connector import (
    SimulatorConnector,
    SimulatorConfig,
    SimulatorScenario,
    SimulatedStkPush,
)

__all__ = [
    # Base classes and models
    "ConnectorBase",
    "InitiateResult",
    "StatusResult",
    "CallbackResult",
    "CallbackPayload",
    "CallbackResponseBody",
    # Wire helpers
    "normalize_phone_number",
    "parse_callback",
    "prepare_stk_request",
    "mask_phone",
    # Connectors
    "PayHeroConnector",
    "SimulatorConnector",
    "SimulatorConfig",
    "SimulatorScenario",
    "SimulatedStkPush",
]
