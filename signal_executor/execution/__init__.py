"""
Execution module.

Reads and writes against the venue, plus the pure translations around them.

ARCHITECTURE:
    GatewayRegistry (exchange key -> gateway)
        │
        ├── CcxtGateway (ccxt async client, error translation)
        └── PaperGateway (in-memory venue, dry run)

    IntentResolver  (alert -> target signed size)
    PositionOracle  (venue positions -> PositionSnapshot)
    client_ids      (deterministic / random order ids)
"""
from signal_executor.execution.ccxt_gateway import CcxtGateway
from signal_executor.execution.client_ids import deterministic_client_id, random_client_id
from signal_executor.execution.gateway_registry import GatewayRegistry
from signal_executor.execution.intent_resolver import IntentResolver
from signal_executor.execution.paper_gateway import PaperGateway
from signal_executor.execution.position_oracle import PositionOracle

__all__ = [
    "CcxtGateway",
    "GatewayRegistry",
    "IntentResolver",
    "PaperGateway",
    "PositionOracle",
    "deterministic_client_id",
    "random_client_id",
]
