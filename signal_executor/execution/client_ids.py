"""
Order client ids.

The primary entry order tied to an alert gets a deterministic id derived
from (strategy, market, time, side), so a resubmission of the same logical
order is recognized by the venue instead of creating a duplicate. Follow-up
corrective orders and protective stops get random ids so distinct steps of
one reconciliation never collide.
"""
import hashlib
import secrets

from signal_executor.constants import CLIENT_ID_HEX_DIGITS, CLIENT_ID_MAX
from signal_executor.domain.models import Alert, OrderSide


def deterministic_client_id(alert: Alert, side: OrderSide) -> str:
    """uint32 id from sha256('strategy|market|time|SIDE'), as a decimal string."""
    raw = f"{alert.strategy}|{alert.market}|{alert.time}|{side.value.upper()}"
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return str(int(digest[:CLIENT_ID_HEX_DIGITS], 16))


def random_client_id() -> str:
    """Random uint32 id as a decimal string (never 0)."""
    return str(secrets.randbelow(CLIENT_ID_MAX) + 1)
