"""
Position Oracle: the exchange's view of one market, as a signed size.

The exchange is the only source of truth; snapshots are rebuilt on every call.
"""
from decimal import Decimal
from typing import Iterable, List, Optional

from signal_executor.data.symbol_utils import filter_market, normalize_market
from signal_executor.domain.models import PositionRecord, PositionSnapshot
from signal_executor.domain.protocols import ExchangeGateway
from signal_executor.monitoring.logger import get_logger

logger = get_logger(__name__)


def select_current_record(records: Optional[Iterable[PositionRecord]], market: str) -> Optional[PositionRecord]:
    """
    Pick the record that represents the live position in `market`.

    Zero-size entries (closed/historical) are ignored. When several remain, the
    most recent by creation time wins; records without a timestamp keep their
    list order, later entries being newer.
    """
    candidates: List[tuple] = []
    for index, record in enumerate(filter_market(records or [], market)):
        if record.size is None or Decimal(record.size) == 0:
            continue
        created = record.created_at.timestamp() if record.created_at else float("-inf")
        candidates.append((created, index, record))
    if not candidates:
        return None
    return max(candidates, key=lambda c: (c[0], c[1]))[2]


class PositionOracle:
    """Reads positions through the gateway and normalizes them to PositionSnapshot."""

    def __init__(self, gateway: ExchangeGateway):
        self.gateway = gateway

    async def get_current_position(self, market: str) -> PositionSnapshot:
        """Current signed position in `market`; FLAT when the venue reports nothing."""
        venue_market = normalize_market(market)
        records = await self.gateway.get_positions(venue_market)
        record = select_current_record(records, venue_market)
        if record is None:
            logger.debug("POSITION_FLAT", market=venue_market, records=len(records or []))
            return PositionSnapshot.flat(venue_market)

        snapshot = PositionSnapshot(
            market=venue_market,
            signed_size=Decimal(record.size),
            entry_price=record.entry_price,
        )
        logger.debug(
            "POSITION_MEASURED",
            market=venue_market,
            signed_size=str(snapshot.signed_size),
            direction=snapshot.direction.value,
        )
        return snapshot
