"""
Exchange key -> gateway lookup table.

Gateways are built lazily on first use and connected once. In dry-run
mode every key maps to a PaperGateway, so the full alert path runs
without touching a venue.
"""
from typing import Callable, Dict, List, Optional

from signal_executor.constants import DEFAULT_API_TIMEOUT_MS, PAPER_EXCHANGE
from signal_executor.domain.protocols import ExchangeGateway
from signal_executor.exceptions import ConfigurationError, GatewayRejected, GatewayTransient, UnsupportedExchange
from signal_executor.execution.ccxt_gateway import CcxtGateway
from signal_executor.execution.paper_gateway import PaperGateway
from signal_executor.monitoring.logger import get_logger

logger = get_logger(__name__)

GatewayFactory = Callable[[], ExchangeGateway]


class GatewayRegistry:
    """Plain lookup table of gateway factories keyed by exchange id."""

    def __init__(self, factories: Dict[str, GatewayFactory]):
        self._factories = {key.lower(): factory for key, factory in factories.items()}
        self._instances: Dict[str, ExchangeGateway] = {}
        self._connected: set = set()

    def keys(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._factories

    def get(self, key: str) -> ExchangeGateway:
        """
        Gateway for an exchange key (case-insensitive).

        Raises:
            UnsupportedExchange: key is not registered
        """
        normalized = (key or "").lower()
        if normalized not in self._factories:
            raise UnsupportedExchange(key, self.keys())
        if normalized not in self._instances:
            self._instances[normalized] = self._factories[normalized]()
        return self._instances[normalized]

    async def connect(self, key: str) -> ExchangeGateway:
        """Gateway for `key`, connected on first use."""
        gateway = self.get(key)
        normalized = key.lower()
        if normalized not in self._connected:
            await gateway.connect()
            self._connected.add(normalized)
        return gateway

    async def readiness(self) -> Dict[str, bool]:
        """Account readiness per registered exchange. Connection failures report False."""
        status: Dict[str, bool] = {}
        for key in self.keys():
            try:
                gateway = await self.connect(key)
                status[key] = bool(await gateway.is_account_ready())
            except (GatewayTransient, GatewayRejected, ConfigurationError) as e:
                logger.warning("ACCOUNT_READINESS_FAILED", exchange=key, error=str(e))
                status[key] = False
        return status

    async def close_all(self) -> None:
        for key in list(self._connected):
            await self._instances[key].close()
        self._connected.clear()

    @classmethod
    def from_config(cls, exchange_config, dry_run: bool = False) -> "GatewayRegistry":
        """
        Build from ExchangeConfig.

        `exchange_config.gateways` maps exchange keys to ccxt ids,
        e.g. {"dydxv4": "dydx"}. The key "paper" always maps to PaperGateway.
        """
        factories: Dict[str, GatewayFactory] = {}
        for key, ccxt_id in exchange_config.gateways.items():
            if dry_run or ccxt_id == PAPER_EXCHANGE:
                factories[key] = _paper_factory(key)
            else:
                factories[key] = _ccxt_factory(key, ccxt_id, exchange_config)
        factories.setdefault(PAPER_EXCHANGE, _paper_factory(PAPER_EXCHANGE))

        logger.info("GATEWAY_REGISTRY_BUILT", exchanges=sorted(factories), dry_run=dry_run)
        return cls(factories)


def _paper_factory(key: str) -> GatewayFactory:
    return lambda: PaperGateway(name=key)


def _ccxt_factory(key: str, ccxt_id: str, exchange_config) -> GatewayFactory:
    def build() -> ExchangeGateway:
        creds: Dict[str, Optional[str]] = dict(exchange_config.credentials.get(key, {}))
        return CcxtGateway(
            key,
            ccxt_id,
            api_key=creds.get("api_key"),
            api_secret=creds.get("api_secret"),
            password=creds.get("password"),
            wallet_address=creds.get("wallet_address"),
            private_key=creds.get("private_key"),
            testnet=exchange_config.testnet,
            timeout_ms=exchange_config.timeout_ms or DEFAULT_API_TIMEOUT_MS,
            settle_currency=exchange_config.settle_currency,
        )

    return build
