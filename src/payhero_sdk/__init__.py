# payhero_sdk package
__version__ = "0.1.0"

from .config import PayHeroConfig, ConfigurationError
from .currency import convert_usd_to_kes, round_half_up
from .connectors import (
    PayHeroConnector,
    SimulatorConnector,
    InitiateResult,
    StatusResult,
    CallbackResult,
    normalize_phone_number,
)
from .database import (
    PaymentIntent,
    LedgerEntry,
    TransactionHistory,
    IntentStatus,
    ResolutionSource,
    PaymentPurpose,
    init_db,
    close_db,
    get_db,
)
from .services import SettlementService, SettlementOutcome, ResolutionResult, CallbackAck

# Status polling exports
from .reconciliation import (
    StatusPoller,
    PollReport,
    PollRequest,
    PollAction,
    ReportGenerator,
)
