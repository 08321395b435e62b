import asyncio
import logging
from enum import Enum
from typing import Dict, Sequence

import aiohttp

from config.settings import RELAYER_URL
from noise_services.errors import DecryptionUnavailable, EncryptionUnavailable, NoiseLedgerError
from noise_services.models import DecryptionResult, EncryptedInput

logger = logging.getLogger(__name__)


class ServiceStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class RelayerClient:
    """
    Client for the confidential-computation relayer.

    The relayer holds the FHE key material: it turns a plaintext into an
    external ciphertext handle plus an input proof bound to a contract and a
    user, and serves public decryptions together with a proof the ledger can
    check. It must be initialized before either is used.
    """

    def __init__(self, base_url: str = RELAYER_URL, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.status = ServiceStatus.IDLE
        self.public_key_id = None

    @property
    def is_ready(self) -> bool:
        return self.status == ServiceStatus.READY

    async def initialize(self) -> None:
        """Fetches the public key descriptor; safe to call again once ready."""
        if self.is_ready:
            return
        self.status = ServiceStatus.LOADING
        try:
            payload = await self._request("GET", "/v1/keyurl", error_cls=EncryptionUnavailable)
            self.public_key_id = payload["response"]["fhePublicKey"]["dataId"]
        except (KeyError, TypeError) as e:
            self.status = ServiceStatus.ERROR
            raise EncryptionUnavailable(f"Relayer returned no public key descriptor: {e}") from e
        except NoiseLedgerError:
            self.status = ServiceStatus.ERROR
            raise
        self.status = ServiceStatus.READY
        logger.info("Relayer ready at %s (public key %s)", self.base_url, self.public_key_id)

    async def encrypt_uint(self, contract_address: str, user_address: str, value: int, bits: int) -> EncryptedInput:
        body = {
            "contractAddress": contract_address,
            "userAddress": user_address,
            "values": [{"type": f"euint{bits}", "value": value}],
        }
        payload = await self._request("POST", "/v1/encrypt", json=body, error_cls=EncryptionUnavailable)
        try:
            return EncryptedInput(handle=payload["handles"][0], input_proof=payload["inputProof"])
        except (KeyError, IndexError, TypeError) as e:
            raise EncryptionUnavailable(f"Malformed encryption response: {e}") from e

    async def public_decrypt(self, handles: Sequence[str], contract_address: str) -> DecryptionResult:
        body = {"handles": list(handles), "contractAddress": contract_address}
        payload = await self._request("POST", "/v1/public-decrypt", json=body, error_cls=DecryptionUnavailable)
        try:
            clear_values: Dict[str, int] = {
                handle.lower(): int(value) for handle, value in payload["clearValues"].items()
            }
            return DecryptionResult(
                clear_values=clear_values,
                abi_encoded_clear_values=payload["abiEncodedClearValues"],
                decryption_proof=payload["decryptionProof"],
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DecryptionUnavailable(f"Malformed decryption response: {e}") from e

    async def _request(self, method: str, path: str, error_cls, json=None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, json=json) as resp:
                    resp.raise_for_status()
                    return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Relayer call %s %s failed: %s", method, path, e)
            raise error_cls(f"Relayer request failed: {e}") from e
