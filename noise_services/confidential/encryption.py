from web3 import Web3

from noise_services.confidential.relayer_client import RelayerClient
from noise_services.errors import EncryptionUnavailable, InvalidPlaintext
from noise_services.models import EncryptedInput

# Decibel readings go on-chain as euint32.
PLAINTEXT_BITS = 32


class EncryptionClient:
    """Turns a plaintext reading into an encrypted payload plus validity proof."""

    def __init__(self, service: RelayerClient, bits: int = PLAINTEXT_BITS):
        self._service = service
        self.bits = bits

    @property
    def max_plaintext(self) -> int:
        return 2 ** self.bits - 1

    async def encrypt(self, contract_address: str, submitter: str, plaintext: int) -> EncryptedInput:
        if not self._service.is_ready:
            raise EncryptionUnavailable("Confidential computation service is not initialized")
        if isinstance(plaintext, bool) or not isinstance(plaintext, int):
            raise InvalidPlaintext(f"Plaintext must be an integer, got {type(plaintext).__name__}")
        if plaintext < 0 or plaintext > self.max_plaintext:
            raise InvalidPlaintext(f"Plaintext {plaintext} outside 0..{self.max_plaintext}")

        return await self._service.encrypt_uint(
            Web3.to_checksum_address(contract_address),
            Web3.to_checksum_address(submitter),
            plaintext,
            self.bits,
        )
