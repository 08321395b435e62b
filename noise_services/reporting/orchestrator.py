import logging
import secrets
import time
from typing import Callable, Dict, Optional, Tuple

from noise_services.confidential.decryption import DecryptionVerifier
from noise_services.confidential.encryption import EncryptionClient
from noise_services.confidential.relayer_client import RelayerClient
from noise_services.errors import AlreadyVerified, NoiseLedgerError, NotAuthenticated, is_user_declined
from noise_services.ledger.gateway import LedgerGateway
from noise_services.ledger.identity import WalletIdentity
from noise_services.models import (
    AggregateStats,
    ConfidentialRecord,
    HeatmapGrid,
    Operation,
    OperationKind,
    OperationPhase,
    ReportDraft,
)
from noise_services.reporting.aggregation import build_heatmap, compute_stats, location_hint
from noise_services.reporting.status import StatusNotifier

logger = logging.getLogger(__name__)


class ReportLifecycle:
    """
    Creates confidential noise reports and reveals them through verified
    decryption.

    This is the only writer of the in-memory record set. Every write ends in
    a full reload from the ledger instead of patching the local copy, and
    every call returns an `Operation` describing the phases it went through.
    Expected failures end up in the status slot and in `Operation.error`; they
    are never raised to the caller, so any operation can simply be retried.
    """

    def __init__(
        self,
        identity: WalletIdentity,
        gateway: LedgerGateway,
        service: RelayerClient,
        notifier: Optional[StatusNotifier] = None,
        encryption: Optional[EncryptionClient] = None,
        verifier: Optional[DecryptionVerifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._identity = identity
        self._gateway = gateway
        self._service = service
        self.notifier = notifier or StatusNotifier()
        self._encryption = encryption or EncryptionClient(service)
        self._verifier = verifier or DecryptionVerifier(service)
        self._clock = clock

        self._records: Tuple[ConfidentialRecord, ...] = ()
        self._refresh_generation = 0
        self._applied_generation = 0

    # --- Read-only views ---

    @property
    def records(self) -> Tuple[ConfidentialRecord, ...]:
        return self._records

    def get(self, record_id: str) -> Optional[ConfidentialRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def stats(self, now: Optional[float] = None) -> AggregateStats:
        return compute_stats(self._records, now=now)

    def heatmap(self) -> HeatmapGrid:
        return build_heatmap(self._records)

    def new_record_id(self) -> str:
        return f"noise-{int(self._clock() * 1000)}-{secrets.token_hex(4)}"

    # --- Operations ---

    async def start(self) -> Operation:
        """Initializes the confidential service for a connected wallet, then loads records."""
        if self._identity.connected and not self._service.is_ready:
            try:
                await self._service.initialize()
            except NoiseLedgerError as e:
                logger.error("FHEVM initialization failed: %s", e)
                self.notifier.error("FHEVM initialization failed")
        return await self.refresh()

    async def refresh(self) -> Operation:
        op = Operation(kind=OperationKind.REFRESH)
        try:
            await self._reload()
        except NoiseLedgerError as e:
            return self._fail(op, e, "Failed to load data")
        op.outcome = "success"
        op.advance(OperationPhase.DONE)
        return op

    async def submit_report(self, draft: ReportDraft, record_id: Optional[str] = None) -> Operation:
        """
        Encrypts the reading, creates the record on the ledger and waits for it.

        Pass the `record_id` of a previous attempt to retry the same logical
        submission; the ledger rejects a second record under the same id.
        """
        op = Operation(kind=OperationKind.CREATE)
        if not self._identity.connected:
            return self._fail(op, NotAuthenticated("Please connect your wallet first"), "Submission failed")

        op.record_id = record_id or self.new_record_id()
        logger.info("Submitting noise report %s", op.record_id)

        try:
            self._advance(op, OperationPhase.ENCRYPTING)
            self.notifier.pending("Encrypting noise reading with Zama FHE...")
            encrypted = await self._encryption.encrypt(
                self._gateway.contract_address, self._identity.address, draft.decibel
            )

            self._advance(op, OperationPhase.SUBMITTING)
            pending = await self._gateway.create_record(
                op.record_id,
                draft.label,
                encrypted.handle,
                encrypted.input_proof,
                draft.public_aux1,
                draft.public_aux2,
                draft.description,
            )

            self._advance(op, OperationPhase.CONFIRMING)
            self.notifier.pending("Waiting for transaction confirmation...")
            await pending.wait()
        except NoiseLedgerError as e:
            return self._fail(op, e, "Submission failed")

        await self._reload_after_write()
        return self._succeed(op, "Noise report submitted!")

    async def decrypt_report(self, record_id: str) -> Operation:
        """
        Reveals a record's decibel level through an on-chain checked decryption.

        Records the ledger already marks as verified are answered from the
        stored value without any cryptographic work. Losing a race to another
        verifier counts as success.
        """
        op = Operation(kind=OperationKind.DECRYPT, record_id=record_id)
        if not self._identity.connected:
            return self._fail(op, NotAuthenticated("Please connect your wallet first"), "Decryption failed")

        try:
            self._advance(op, OperationPhase.CHECKING_ON_CHAIN_STATE)
            snapshot = await self._gateway.get_record(record_id)
            if snapshot.verified:
                self._advance(op, OperationPhase.SHORT_CIRCUIT_VERIFIED)
                op.value = snapshot.revealed_value
                return self._succeed(op, "Data already verified on-chain")

            handle = await self._gateway.get_encrypted_handle(record_id)

            async def submit(clear_values_encoded: str, decryption_proof: str):
                self._advance(op, OperationPhase.SUBMITTING_PROOF)
                self.notifier.pending("Verifying decryption on-chain...")
                pending = await self._gateway.submit_decryption_proof(
                    record_id, clear_values_encoded, decryption_proof
                )
                self._advance(op, OperationPhase.CONFIRMING)
                return pending

            self._advance(op, OperationPhase.REQUESTING_DECRYPTION)
            self.notifier.pending("Requesting decryption...")
            result = await self._verifier.verify_decryption(
                [handle], self._gateway.contract_address, submit
            )
            clear_value = result.clear_values[handle.lower()]
        except AlreadyVerified:
            logger.info("Record %s was verified by another actor first", record_id)
            await self._reload_after_write()
            record = self.get(record_id)
            op.value = record.trusted_value if record else None
            return self._succeed(op, "Data already verified on-chain")
        except NoiseLedgerError as e:
            return self._fail(op, e, "Decryption failed")

        await self._reload_after_write()
        record = self.get(record_id)
        if record is not None and record.verified:
            if record.revealed_value != clear_value:
                logger.warning("Ledger value %s differs from decrypted %s for %s; using ledger value",
                               record.revealed_value, clear_value, record_id)
            op.value = record.revealed_value
        else:
            op.value = clear_value
        return self._succeed(op, "Decryption verified!")

    async def check_availability(self) -> Operation:
        op = Operation(kind=OperationKind.AVAILABILITY)
        try:
            available = await self._gateway.check_availability()
        except NoiseLedgerError as e:
            return self._fail(op, e, "Availability check failed")
        if not available:
            op.error_kind = "Unavailable"
            return self._fail(op, None, "Availability check failed")
        return self._succeed(op, "FHE contract availability check passed!")

    # --- Internals ---

    async def _reload(self) -> bool:
        """
        Re-lists and re-fetches every record, then swaps the whole set in.

        A reload that finishes after a newer one was applied is dropped. A
        record that fails to load is skipped without failing the listing.
        """
        self._refresh_generation += 1
        generation = self._refresh_generation

        record_ids = await self._gateway.list_record_ids()
        previous: Dict[str, ConfidentialRecord] = {r.id: r for r in self._records}
        loaded: Dict[str, ConfidentialRecord] = {}

        for record_id in record_ids:
            if record_id in loaded:
                logger.warning("Duplicate record id %s in ledger listing", record_id)
                continue
            try:
                record = await self._gateway.get_record(record_id)
            except Exception as e:
                logger.warning("Error loading noise record %s: %s", record_id, e)
                continue

            known = previous.get(record_id)
            if known is not None and known.verified and not record.verified:
                logger.warning("Stale read for verified record %s; keeping verified copy", record_id)
                record = known
            loaded[record_id] = record.model_copy(update={"location_hint": location_hint(record_id)})

        if generation < self._applied_generation:
            logger.debug("Dropping stale refresh #%d (already applied #%d)", generation, self._applied_generation)
            return False

        self._applied_generation = generation
        self._records = tuple(loaded.values())
        logger.info("Loaded %d noise records", len(self._records))
        return True

    async def _reload_after_write(self) -> None:
        # The write itself is confirmed; a failed reload only leaves the view stale.
        try:
            await self._reload()
        except NoiseLedgerError as e:
            logger.warning("Reload after write failed: %s", e)

    @staticmethod
    def _advance(op: Operation, phase: OperationPhase) -> None:
        op.advance(phase)
        logger.info("%s %s -> %s", op.kind.value, op.record_id or "", phase.value)

    def _succeed(self, op: Operation, message: str) -> Operation:
        op.outcome = "success"
        op.advance(OperationPhase.DONE)
        self.notifier.success(message)
        logger.info("%s %s succeeded: %s", op.kind.value, op.record_id or "", message)
        return op

    def _fail(self, op: Operation, error: Optional[NoiseLedgerError], prefix: str) -> Operation:
        if error is None:
            message = prefix
        elif is_user_declined(getattr(error, "reason", error.message)):
            message = "Transaction cancelled by user"
        elif isinstance(error, NotAuthenticated):
            message = error.message
        else:
            message = f"{prefix}: {error.message}"

        op.outcome = "error"
        op.error = message
        if error is not None:
            op.error_kind = type(error).__name__
        op.advance(OperationPhase.DONE)
        self.notifier.error(message)
        logger.error("%s %s failed: %s", op.kind.value, op.record_id or "", message)
        return op
