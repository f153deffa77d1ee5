"""
SwiftRemit: peer-to-agent remittance escrow.

A sender escrows stablecoin value, a registered payout agent confirms
fiat disbursement, and the platform keeps a proportional fee.
"""

__version__ = "0.1.0"

from .auth import AuthorizationVerifier, Proof, SignedAuthorization, sign_authorization
from .audit import AuditTrail
from .config import Config, ConfigStore, Settings
from .escrow import CustodyReport, RemittanceEscrow
from .events import Event, EventLog, EventSink, EventTopic, FanOut
from .ledger import Remittance, RemittanceStatus
from .storage import KeyValueStore, MemoryStore, SqliteStore, WriteBatch
from .transfer import LocalToken, ValueTransfer

__all__ = [
    "RemittanceEscrow", "CustodyReport", "Remittance", "RemittanceStatus",
    "Config", "ConfigStore", "Settings",
    "Proof", "AuthorizationVerifier", "SignedAuthorization", "sign_authorization",
    "Event", "EventLog", "EventSink", "EventTopic", "FanOut", "AuditTrail",
    "KeyValueStore", "MemoryStore", "SqliteStore", "WriteBatch",
    "LocalToken", "ValueTransfer",
]
