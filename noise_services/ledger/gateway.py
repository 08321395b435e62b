import asyncio
import json
import logging
from typing import Awaitable, Callable, List, Optional

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3RPCError,
)

from config.settings import TX_CONFIRMATION_TIMEOUT, TX_GAS_LIMIT
from noise_services.errors import LedgerUnreachable, NotAuthenticated, RecordNotFound, Rejected
from noise_services.ledger.identity import WalletIdentity
from noise_services.models import ConfidentialRecord

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError, ProviderConnectionError)
# JSON-RPC errors from the node itself (rate limits, overload, missing headers).
# Contract reverts are caught ahead of these wherever both can occur.
NODE_ERRORS = TRANSPORT_ERRORS + (Web3RPCError,)


def revert_reason(error: Exception) -> str:
    """Human-readable revert string from a web3 contract error."""
    message = getattr(error, "message", None) or str(error)
    for prefix in ("execution reverted: ", "execution reverted"):
        if message.startswith(prefix):
            message = message[len(prefix):]
    return message.strip() or "execution reverted"


class PendingTransaction:
    """A broadcast transaction; `wait()` resolves once the ledger accepted or rejected it."""

    def __init__(self, w3: AsyncWeb3, tx_hash, timeout: float = TX_CONFIRMATION_TIMEOUT,
                 replay: Optional[Callable[[int], Awaitable]] = None):
        self._w3 = w3
        self.tx_hash = tx_hash
        self.timeout = timeout
        # Re-runs the call at the inclusion block to recover a revert reason.
        self._replay = replay

    @property
    def hash_hex(self) -> str:
        return Web3.to_hex(self.tx_hash)

    async def wait(self):
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(self.tx_hash, timeout=self.timeout)
        except TimeExhausted as e:
            raise LedgerUnreachable(f"Transaction {self.hash_hex} not confirmed within {self.timeout}s") from e
        except NODE_ERRORS as e:
            raise LedgerUnreachable(f"Lost connection while waiting for {self.hash_hex}: {e}") from e

        if receipt.get("status") == 0:
            reason = await self._revert_reason(receipt.get("blockNumber"))
            logger.warning("Transaction %s REVERTED on-chain: %s", self.hash_hex, reason)
            raise Rejected(reason)
        logger.info("Transaction %s confirmed in block %s", self.hash_hex, receipt.get("blockNumber"))
        return receipt

    async def _revert_reason(self, block_number) -> str:
        default = "transaction reverted on-chain"
        if self._replay is None or block_number is None:
            return default
        try:
            await self._replay(block_number)
        except ContractLogicError as e:
            return revert_reason(e)
        except NODE_ERRORS as e:
            logger.debug("Could not replay %s for a revert reason: %s", self.hash_hex, e)
        return default


class LedgerGateway:
    """
    Read and signed-write access to the confidential noise record contract.

    Reads never mutate anything. Every write is one ledger transaction: it is
    simulated first so reverts come back as `Rejected` with the contract's
    reason, then built, signed locally and broadcast.

    Writes from one gateway share the signer's nonce sequence, so nonce
    assignment and broadcast happen one write at a time.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract,
        identity: Optional[WalletIdentity] = None,
        gas_limit: int = TX_GAS_LIMIT,
        confirmation_timeout: float = TX_CONFIRMATION_TIMEOUT,
    ):
        self._w3 = w3
        self._contract = contract
        self._identity = identity or WalletIdentity()
        self.gas_limit = gas_limit
        self.confirmation_timeout = confirmation_timeout
        self._send_lock = asyncio.Lock()
        self._next_nonce: Optional[int] = None

    @classmethod
    def connect(cls, node_url: str, contract_address: str, abi_path: str,
                identity: Optional[WalletIdentity] = None, **kwargs) -> "LedgerGateway":
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(node_url))
        with open(abi_path, "r") as f:
            contract_abi = json.load(f)
        contract = w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=contract_abi)
        return cls(w3, contract, identity=identity, **kwargs)

    @property
    def contract_address(self) -> str:
        return self._contract.address

    # --- Read path ---

    async def list_record_ids(self) -> List[str]:
        try:
            return list(await self._contract.functions.getAllBusinessIds().call())
        except (ContractLogicError, BadFunctionCallOutput) as e:
            raise LedgerUnreachable(f"Record listing failed: {revert_reason(e)}") from e
        except NODE_ERRORS as e:
            raise LedgerUnreachable(f"Could not list records: {e}") from e

    async def get_record(self, record_id: str) -> ConfidentialRecord:
        data = await self._read_record(record_id, "getBusinessData")
        name, public_value1, public_value2, description, creator, timestamp, is_verified, decrypted_value = data
        if creator == ZERO_ADDRESS:
            raise RecordNotFound(record_id)
        handle = await self.get_encrypted_handle(record_id)

        return ConfidentialRecord(
            id=record_id,
            label=name,
            encrypted_value_handle=handle,
            public_aux1=int(public_value1 or 0),
            public_aux2=int(public_value2 or 0),
            description=description,
            submitter=creator,
            created_at=int(timestamp),
            verified=bool(is_verified),
            revealed_value=int(decrypted_value or 0),
        )

    async def get_encrypted_handle(self, record_id: str) -> str:
        handle = await self._read_record(record_id, "getEncryptedValue")
        return Web3.to_hex(handle)

    async def check_availability(self) -> bool:
        try:
            return bool(await self._contract.functions.isAvailable().call())
        except (ContractLogicError, BadFunctionCallOutput) as e:
            logger.warning("isAvailable() failed: %s", revert_reason(e))
            return False
        except NODE_ERRORS as e:
            raise LedgerUnreachable(f"Availability check could not reach the ledger: {e}") from e

    async def _read_record(self, record_id: str, function_name: str):
        try:
            return await getattr(self._contract.functions, function_name)(record_id).call()
        except (ContractLogicError, BadFunctionCallOutput) as e:
            logger.debug("%s(%s) reverted: %s", function_name, record_id, revert_reason(e))
            raise RecordNotFound(record_id) from e
        except NODE_ERRORS as e:
            raise LedgerUnreachable(f"Could not read record '{record_id}': {e}") from e

    # --- Write path ---

    async def create_record(self, record_id: str, label: str, encrypted_payload: str, validity_proof: str,
                            public_aux1: int, public_aux2: int, description: str) -> PendingTransaction:
        return await self._transact(
            "createBusinessData",
            record_id,
            label,
            Web3.to_bytes(hexstr=encrypted_payload),
            Web3.to_bytes(hexstr=validity_proof),
            public_aux1,
            public_aux2,
            description,
        )

    async def submit_decryption_proof(self, record_id: str, clear_values_encoded: str,
                                      decryption_proof: str) -> PendingTransaction:
        return await self._transact(
            "verifyDecryption",
            record_id,
            Web3.to_bytes(hexstr=clear_values_encoded),
            Web3.to_bytes(hexstr=decryption_proof),
        )

    async def _transact(self, function_name: str, *args) -> PendingTransaction:
        if not self._identity.connected:
            raise NotAuthenticated("A connected wallet is required to write to the ledger")
        account = self._identity.account
        contract_fn = getattr(self._contract.functions, function_name)(*args)

        # Preflight simulation so reverts surface with their reason
        try:
            await contract_fn.call({"from": account.address})
        except ContractLogicError as e:
            reason = revert_reason(e)
            logger.warning("Preflight revert for %s: %s", function_name, reason)
            raise Rejected(reason) from e
        except NODE_ERRORS as e:
            raise LedgerUnreachable(f"Preflight for {function_name} could not reach the ledger: {e}") from e

        async with self._send_lock:
            try:
                nonce = await self._reserve_nonce(account.address)
                gas_price = await self._w3.eth.gas_price
                tx = await contract_fn.build_transaction({
                    "from": account.address,
                    "nonce": nonce,
                    "gas": self.gas_limit,
                    "gasPrice": gas_price,
                })
                signed_tx = account.sign_transaction(tx)
                tx_hash = await self._w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            except ContractLogicError as e:
                raise Rejected(revert_reason(e)) from e
            except TRANSPORT_ERRORS as e:
                # the node may or may not have seen it; ask it again next time
                self._next_nonce = None
                raise LedgerUnreachable(f"Could not broadcast {function_name}: {e}") from e
            except Web3RPCError as e:
                self._next_nonce = None
                raise Rejected(str(e)) from e
            self._next_nonce = nonce + 1

        pending = PendingTransaction(
            self._w3,
            tx_hash,
            timeout=self.confirmation_timeout,
            replay=lambda block: contract_fn.call({"from": account.address}, block_identifier=block),
        )
        logger.info("%s broadcast with nonce %d. Hash: %s", function_name, nonce, pending.hash_hex)
        return pending

    async def _reserve_nonce(self, address: str) -> int:
        # The node's pending count can lag behind a transaction we just sent.
        node_nonce = await self._w3.eth.get_transaction_count(address, "pending")
        if self._next_nonce is None:
            return node_nonce
        return max(node_nonce, self._next_nonce)
