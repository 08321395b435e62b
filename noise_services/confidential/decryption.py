import logging
from typing import Awaitable, Callable, Sequence

from noise_services.confidential.relayer_client import RelayerClient
from noise_services.errors import AlreadyVerified, DecryptionUnavailable, ProofRejected, Rejected, is_already_verified
from noise_services.ledger.gateway import PendingTransaction
from noise_services.models import DecryptionResult

logger = logging.getLogger(__name__)

SubmitProof = Callable[[str, str], Awaitable[PendingTransaction]]


class DecryptionVerifier:
    """
    Reveals ciphertext handles through the relayer and gets the result
    accepted on-chain.

    The cleartext is only handed back after the ledger confirmed the
    decryption proof, so callers never see a value the ledger refused.
    """

    def __init__(self, service: RelayerClient):
        self._service = service

    async def verify_decryption(self, handles: Sequence[str], contract_address: str,
                                submit: SubmitProof) -> DecryptionResult:
        if not self._service.is_ready:
            raise DecryptionUnavailable("Confidential computation service is not initialized")

        result = await self._service.public_decrypt(handles, contract_address)
        missing = [h for h in handles if h.lower() not in result.clear_values]
        if missing:
            raise ProofRejected(f"no clear value returned for handle(s) {', '.join(missing)}")

        try:
            pending = await submit(result.abi_encoded_clear_values, result.decryption_proof)
            await pending.wait()
        except Rejected as e:
            if is_already_verified(e.reason):
                raise AlreadyVerified(e.reason) from e
            raise ProofRejected(e.reason) from e

        logger.info("Decryption proof accepted for %d handle(s)", len(handles))
        return result
