"""Pytest fixtures: an in-memory ledger contract and relayer that behave like the real pair."""

import asyncio
import hashlib
import secrets

import pytest
from eth_account import Account

from noise_services.confidential.relayer_client import ServiceStatus
from noise_services.errors import (
    EncryptionUnavailable,
    LedgerUnreachable,
    NotAuthenticated,
    RecordNotFound,
    Rejected,
)
from noise_services.ledger.identity import WalletIdentity
from noise_services.models import ConfidentialRecord, DecryptionResult, EncryptedInput
from noise_services.reporting.orchestrator import ReportLifecycle
from noise_services.reporting.status import StatusNotifier

CONTRACT_ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
REPORTER_KEY = "0x" + "11" * 32
NOW = 1_760_000_000


def _proof_for(*parts) -> str:
    return "0x" + hashlib.sha256("|".join(str(p).lower() for p in parts).encode()).hexdigest()


def _encode_uint(value: int) -> str:
    return "0x" + value.to_bytes(32, "big").hex()


class FakeRelayer:
    """Relayer double: remembers which plaintext sits behind each handle."""

    def __init__(self, ready=True):
        self.status = ServiceStatus.READY if ready else ServiceStatus.IDLE
        self.inputs = {}            # external handle -> plaintext
        self.handle_values = {}     # ledger handle -> plaintext
        self.fail_initialize = False
        self.fail_encrypt = False
        self.corrupt_proofs = False
        self.decrypt_requests = []

    @property
    def is_ready(self):
        return self.status == ServiceStatus.READY

    async def initialize(self):
        await asyncio.sleep(0)
        if self.fail_initialize:
            self.status = ServiceStatus.ERROR
            raise EncryptionUnavailable("relayer offline")
        self.status = ServiceStatus.READY

    async def encrypt_uint(self, contract_address, user_address, value, bits):
        await asyncio.sleep(0)
        if self.fail_encrypt:
            raise EncryptionUnavailable("relayer offline")
        handle = "0x" + secrets.token_hex(32)
        self.inputs[handle] = value
        return EncryptedInput(handle=handle, input_proof=_proof_for(handle, contract_address, user_address))

    async def public_decrypt(self, handles, contract_address):
        await asyncio.sleep(0)
        self.decrypt_requests.append(list(handles))
        values = {h.lower(): self.handle_values[h.lower()] for h in handles}
        (handle, value), = values.items()
        proof = "0xdead" if self.corrupt_proofs else _proof_for(handle, value)
        return DecryptionResult(
            clear_values=values,
            abi_encoded_clear_values=_encode_uint(value),
            decryption_proof=proof,
        )


class FakePending:
    def __init__(self, ledger, apply):
        self._ledger = ledger
        self._apply = apply

    async def wait(self):
        # mining happens after every other coroutine had a chance to run
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self._apply()
        return {"status": 1}


class FakeLedger:
    """
    Ledger double with the contract's rules: unique ids, proof checks, and
    a single accepted decryption per record.
    """

    contract_address = CONTRACT_ADDRESS

    def __init__(self, relayer: FakeRelayer, sender: str, clock=lambda: NOW):
        self._relayer = relayer
        self._sender = sender
        self._clock = clock
        self.entries = {}
        self.order = []
        self.transactions = []
        self.accepted_proofs = []
        self.broken_ids = set()
        self.unreachable = False
        self.available = True
        self.decline_next = False

    # --- read path ---

    async def list_record_ids(self):
        await asyncio.sleep(0)
        if self.unreachable:
            raise LedgerUnreachable("node down")
        return list(self.order)

    async def get_record(self, record_id):
        await asyncio.sleep(0)
        if self.unreachable or record_id in self.broken_ids:
            raise LedgerUnreachable(f"could not read {record_id}")
        if record_id not in self.entries:
            raise RecordNotFound(record_id)
        return ConfidentialRecord(**self.entries[record_id])

    async def get_encrypted_handle(self, record_id):
        record = await self.get_record(record_id)
        return record.encrypted_value_handle

    async def check_availability(self):
        await asyncio.sleep(0)
        if self.unreachable:
            raise LedgerUnreachable("node down")
        return self.available

    # --- write path ---

    def _preflight(self):
        if self._sender is None:
            raise NotAuthenticated("no signer")
        if self.decline_next:
            self.decline_next = False
            raise Rejected("user rejected transaction")

    async def create_record(self, record_id, label, encrypted_payload, validity_proof,
                            public_aux1, public_aux2, description):
        await asyncio.sleep(0)
        self._preflight()
        if record_id in self.entries:
            raise Rejected("Business data already exists")
        if validity_proof != _proof_for(encrypted_payload, CONTRACT_ADDRESS, self._sender):
            raise Rejected("Invalid input proof")
        self.transactions.append(("createBusinessData", record_id))

        def apply():
            ledger_handle = "0x" + hashlib.sha256(b"ledger" + encrypted_payload.encode()).hexdigest()
            self._relayer.handle_values[ledger_handle] = self._relayer.inputs[encrypted_payload]
            self.entries[record_id] = dict(
                id=record_id,
                label=label,
                encrypted_value_handle=ledger_handle,
                public_aux1=public_aux1,
                public_aux2=public_aux2,
                description=description,
                submitter=self._sender,
                created_at=int(self._clock()),
            )
            self.order.append(record_id)

        return FakePending(self, apply)

    async def submit_decryption_proof(self, record_id, clear_values_encoded, decryption_proof):
        await asyncio.sleep(0)
        self._preflight()
        if self.entries[record_id].get("verified"):
            raise Rejected("Data already verified")
        self.transactions.append(("verifyDecryption", record_id))

        def apply():
            entry = self.entries[record_id]
            if entry.get("verified"):
                raise Rejected("Data already verified")
            value = int(clear_values_encoded, 16)
            if decryption_proof != _proof_for(entry["encrypted_value_handle"], value):
                raise Rejected("Invalid decryption proof")
            entry["verified"] = True
            entry["revealed_value"] = value
            self.accepted_proofs.append(record_id)

        return FakePending(self, apply)

    # --- helpers for tests ---

    def seed(self, record_id, value, verified=False, public_aux1=0, created_at=NOW):
        handle = "0x" + hashlib.sha256(record_id.encode()).hexdigest()
        self._relayer.handle_values[handle] = value
        self.entries[record_id] = dict(
            id=record_id,
            label=f"Place {record_id}",
            encrypted_value_handle=handle,
            public_aux1=public_aux1,
            submitter=self._sender or "0x0000000000000000000000000000000000000001",
            created_at=created_at,
            verified=verified,
            revealed_value=value if verified else 0,
        )
        self.order.append(record_id)


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def identity():
    return WalletIdentity(Account.from_key(REPORTER_KEY))


@pytest.fixture
def relayer():
    return FakeRelayer()


@pytest.fixture
def ledger(relayer, identity):
    return FakeLedger(relayer, identity.address)


@pytest.fixture
def status_clock():
    return FakeClock()


@pytest.fixture
def notifier(status_clock):
    return StatusNotifier(success_seconds=2, error_seconds=3, clock=status_clock)


@pytest.fixture
def lifecycle(identity, ledger, relayer, notifier):
    return ReportLifecycle(identity, ledger, relayer, notifier=notifier, clock=lambda: NOW)
