"""
Inbound alert validation: raw JSON payload -> Alert.

Runs before the dedup store is touched, so a malformed alert never
consumes a dedup slot.
"""
import hmac
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

from signal_executor.constants import DEFAULT_EXCHANGE
from signal_executor.domain.models import Alert, DesiredPosition
from signal_executor.exceptions import InvalidAlert, UnsupportedExchange

# Wire name -> Alert field
_SIZE_FIELDS = {"size": "size", "sizeUsd": "size_usd", "sizeByLeverage": "size_by_leverage"}


def _decimal_field(payload: Dict[str, Any], name: str, *, positive: bool = True) -> Optional[Decimal]:
    value = payload.get(name)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidAlert(f"{name} must be a number", field=name)
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise InvalidAlert(f"{name} must be a number, got {value!r}", field=name)
    if not number.is_finite() or (positive and number <= 0):
        raise InvalidAlert(f"{name} must be a positive number, got {value!r}", field=name)
    return number


def _required_text(payload: Dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if value is None or not str(value).strip():
        raise InvalidAlert(f"{name} field must not be empty", field=name)
    return str(value).strip()


def validate_alert(
    payload: Any,
    *,
    passphrase: Optional[str] = None,
    exchanges: Iterable[str] = (DEFAULT_EXCHANGE,),
    default_exchange: str = DEFAULT_EXCHANGE,
) -> Alert:
    """
    Validate a decoded webhook body and build an Alert.

    Args:
        payload: Decoded JSON body
        passphrase: Expected passphrase; None disables the check
        exchanges: Registered exchange keys
        default_exchange: Key used when the alert names none

    Raises:
        UnsupportedExchange: exchange key not registered
        InvalidAlert: anything else wrong with the payload
    """
    if not isinstance(payload, dict) or not payload:
        raise InvalidAlert("Alert is empty or not a JSON object")

    if passphrase:
        supplied = payload.get("passphrase")
        if not supplied:
            raise InvalidAlert("Passphrase is missing in alert message", field="passphrase")
        if not hmac.compare_digest(str(supplied).encode(), passphrase.encode()):
            raise InvalidAlert("Passphrase does not match", field="passphrase")

    exchange = str(payload.get("exchange") or default_exchange).strip().lower()
    available = sorted(k.lower() for k in exchanges)
    if exchange not in available:
        raise UnsupportedExchange(exchange, available)

    strategy = _required_text(payload, "strategy")
    market = _required_text(payload, "market")
    time = _required_text(payload, "time")
    desired = DesiredPosition.parse(payload.get("desired_position"))

    price = _decimal_field(payload, "price")
    sizes = {field: _decimal_field(payload, wire) for wire, field in _SIZE_FIELDS.items()}

    if desired != DesiredPosition.FLAT:
        if all(v is None for v in sizes.values()):
            raise InvalidAlert("One of size, sizeUsd or sizeByLeverage is required", field="size")
        if sizes["size"] is None and price is None:
            raise InvalidAlert("price is required for sizeUsd / sizeByLeverage", field="price")

    return Alert(
        strategy=strategy,
        market=market,
        desired_position=desired,
        price=price,
        time=time,
        exchange=exchange,
        **sizes,
    )
