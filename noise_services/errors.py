"""
Failure kinds raised by the confidential reporting services.

Everything derives from NoiseLedgerError so the orchestrator can turn any of
them into an error status without catching unrelated exceptions.
"""


class NoiseLedgerError(Exception):
    """Base class for every expected failure of a report or reveal."""

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotAuthenticated(NoiseLedgerError):
    """No connected wallet identity is available for a write."""


class EncryptionUnavailable(NoiseLedgerError):
    """The confidential-computation service is not initialized or unreachable."""


class DecryptionUnavailable(NoiseLedgerError):
    """The public decryption request could not be served."""


class InvalidPlaintext(NoiseLedgerError):
    """The value to encrypt is negative, not an integer, or too wide."""


class LedgerUnreachable(NoiseLedgerError):
    """Transport failure while talking to the ledger node."""


class RecordNotFound(NoiseLedgerError):
    def __init__(self, record_id: str):
        super().__init__(f"Record '{record_id}' does not exist on the ledger")
        self.record_id = record_id


class Rejected(NoiseLedgerError):
    """The ledger declined a write. `reason` is the revert or wallet message."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AlreadyVerified(NoiseLedgerError):
    """Another actor got its decryption proof accepted first."""


class ProofRejected(NoiseLedgerError):
    def __init__(self, reason: str):
        super().__init__(f"Decryption proof rejected: {reason}")
        self.reason = reason


# Revert string the ledger contract uses for a second verification.
ALREADY_VERIFIED_REASON = "already verified"
# Wallet / signer message when the user refuses to sign.
USER_DECLINED_REASON = "user rejected"


def is_already_verified(reason: str) -> bool:
    return ALREADY_VERIFIED_REASON in (reason or "").lower()


def is_user_declined(reason: str) -> bool:
    return USER_DECLINED_REASON in (reason or "").lower()
