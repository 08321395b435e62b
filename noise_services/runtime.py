import asyncio
import logging
import threading
from typing import Optional

from config import settings
from noise_services.confidential.relayer_client import RelayerClient
from noise_services.ledger.gateway import LedgerGateway
from noise_services.ledger.identity import WalletIdentity
from noise_services.reporting.orchestrator import ReportLifecycle
from noise_services.reporting.status import StatusNotifier

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """
    An asyncio loop running on a daemon thread.

    Lets synchronous callers (Flask views) drive the orchestrator while all of
    its coroutines keep sharing one loop.
    """

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="noise-ledger-loop", daemon=True)

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> "BackgroundLoop":
        if not self._thread.is_alive():
            self._thread.start()
        return self

    def run(self, coro, timeout: Optional[float] = None):
        """Runs a coroutine on the background loop and blocks for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout)

    def stop(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_lifecycle(
    node_url: Optional[str] = None,
    contract_address: Optional[str] = None,
    relayer_url: Optional[str] = None,
    identity: Optional[WalletIdentity] = None,
) -> ReportLifecycle:
    """Wires identity, ledger gateway, relayer and notifier from settings."""
    node_url = node_url or settings.ETHEREUM_NODE_URL
    contract_address = contract_address or settings.NOISE_LEDGER_CONTRACT_ADDRESS
    if not node_url or not contract_address:
        raise RuntimeError("ETHEREUM_NODE_URL and NOISE_LEDGER_CONTRACT_ADDRESS must be configured")

    if identity is None:
        identity = WalletIdentity.from_settings(settings.REPORTER_PRIVATE_KEY, settings.REPORTER_MNEMONIC)
    logger.info("Reporter identity: %s", identity)

    gateway = LedgerGateway.connect(
        node_url,
        contract_address,
        settings.NOISE_LEDGER_ABI_PATH,
        identity=identity,
        gas_limit=settings.TX_GAS_LIMIT,
        confirmation_timeout=settings.TX_CONFIRMATION_TIMEOUT,
    )
    service = RelayerClient(relayer_url or settings.RELAYER_URL)
    return ReportLifecycle(identity, gateway, service, notifier=StatusNotifier())
