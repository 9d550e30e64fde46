"""
Alert service: one inbound alert in, one outcome out.

Pipeline (fixed order):
    validate -> inbound dedup (persisted) -> resolve target -> reconcile

Validation runs first so a malformed alert never occupies a dedup slot.
The dedup key is marked before execution: a valid alert whose execution
fails is not retried when the webhook is re-delivered.
"""
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from signal_executor.config.config import Config
from signal_executor.domain.protocols import Clock
from signal_executor.exceptions import (
    ConfigurationError,
    GatewayRejected,
    GatewayTransient,
    InvalidAlert,
    SignalExecutorError,
    UnsupportedExchange,
)
from signal_executor.execution.gateway_registry import GatewayRegistry
from signal_executor.execution.intent_resolver import IntentResolver
from signal_executor.monitoring.logger import get_logger, redact_alert
from signal_executor.reconciliation.engine import (
    ReconciliationEngine,
    ReconciliationResult,
    ReconciliationSettings,
    ReconciliationState,
)
from signal_executor.runtime.clock import SystemClock
from signal_executor.runtime.market_locks import MarketLockTable
from signal_executor.runtime.signal_registry import SignalRegistry
from signal_executor.services.alert_validator import validate_alert
from signal_executor.storage.alert_store import AlertDeduplicator, JsonFileAlertStore

logger = get_logger(__name__)


class AlertOutcome(str, Enum):
    """Result reported back to the webhook caller."""
    OK = "OK"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    UNSUPPORTED_EXCHANGE = "unsupported exchange"
    ERROR = "error"

    @property
    def http_status(self) -> int:
        if self in (AlertOutcome.OK, AlertOutcome.DUPLICATE):
            return 200
        if self in (AlertOutcome.INVALID, AlertOutcome.UNSUPPORTED_EXCHANGE):
            return 400
        return 500


class AlertService:
    """
    Owns the per-process execution state (market locks, processed signals)
    and one reconciliation engine per exchange key.
    """

    def __init__(
        self,
        registry: GatewayRegistry,
        deduplicator: AlertDeduplicator,
        *,
        passphrase: Optional[str] = None,
        default_exchange: str = "dydxv4",
        clock: Optional[Clock] = None,
        settings: Optional[ReconciliationSettings] = None,
    ):
        self.registry = registry
        self.deduplicator = deduplicator
        self.passphrase = passphrase
        self.default_exchange = default_exchange.lower()
        self.clock = clock or SystemClock()
        self.settings = settings or ReconciliationSettings()
        self.locks = MarketLockTable()
        self.signals = SignalRegistry()
        self._engines: Dict[str, ReconciliationEngine] = {}
        self.last_result: Optional[ReconciliationResult] = None

    async def handle_alert(self, payload: Any) -> AlertOutcome:
        logger.info("ALERT_RECEIVED", alert=redact_alert(payload))

        try:
            alert = validate_alert(
                payload,
                passphrase=self.passphrase,
                exchanges=self.registry.keys(),
                default_exchange=self.default_exchange,
            )
        except UnsupportedExchange as e:
            logger.warning("ALERT_UNSUPPORTED_EXCHANGE", exchange=e.exchange, available=e.available)
            return AlertOutcome.UNSUPPORTED_EXCHANGE
        except InvalidAlert as e:
            logger.warning("ALERT_INVALID", reason=str(e), field=e.field)
            return AlertOutcome.INVALID

        try:
            is_new = await self.deduplicator.check_and_mark(alert.store_key)
        except OSError as e:
            logger.error("ALERT_STORE_UNAVAILABLE", key=alert.store_key, error=str(e))
            return AlertOutcome.ERROR
        if not is_new:
            return AlertOutcome.DUPLICATE

        try:
            gateway = await self.registry.connect(alert.exchange)
            target = await IntentResolver(gateway).resolve_target(alert)
        except InvalidAlert as e:
            logger.warning("ALERT_INVALID", reason=str(e), field=e.field, signal_id=alert.signal_id)
            return AlertOutcome.INVALID
        except (GatewayTransient, GatewayRejected, ConfigurationError) as e:
            logger.error("ALERT_PREPARATION_FAILED", signal_id=alert.signal_id, error=str(e))
            return AlertOutcome.ERROR

        try:
            result = await self.engine_for(alert.exchange).reconcile(alert, target)
        except SignalExecutorError as e:
            logger.exception("RECONCILE_FAILED", signal_id=alert.signal_id, error=str(e))
            return AlertOutcome.ERROR
        self.last_result = result

        if result.status == ReconciliationState.DUPLICATE:
            return AlertOutcome.DUPLICATE
        if result.status == ReconciliationState.CONVERGED:
            return AlertOutcome.OK
        return AlertOutcome.ERROR

    def engine_for(self, exchange: str) -> ReconciliationEngine:
        """Engine bound to one exchange's gateway; all engines share locks and signal ids."""
        key = exchange.lower()
        if key not in self._engines:
            self._engines[key] = ReconciliationEngine(
                self.registry.get(key),
                locks=self.locks,
                signals=self.signals,
                clock=self.clock,
                settings=self.settings,
            )
        return self._engines[key]

    async def accounts(self) -> Dict[str, bool]:
        return await self.registry.readiness()

    async def close(self) -> None:
        await self.registry.close_all()


def build_service(
    config: Config,
    *,
    clock: Optional[Clock] = None,
    registry: Optional[GatewayRegistry] = None,
    deduplicator: Optional[AlertDeduplicator] = None,
) -> AlertService:
    """Wire an AlertService from configuration. Collaborators may be overridden for tests."""
    registry = registry or GatewayRegistry.from_config(config.exchange, dry_run=config.system.dry_run)
    deduplicator = deduplicator or AlertDeduplicator(JsonFileAlertStore(Path(config.storage.alert_store_path)))
    service = AlertService(
        registry,
        deduplicator,
        passphrase=config.webhook.passphrase,
        default_exchange=config.exchange.default_exchange,
        clock=clock,
        settings=ReconciliationSettings.from_config(config.execution),
    )
    logger.info(
        "ALERT_SERVICE_READY",
        exchanges=registry.keys(),
        dry_run=config.system.dry_run,
        passphrase_required=bool(config.webhook.passphrase),
    )
    return service
