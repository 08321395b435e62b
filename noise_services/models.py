import re
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config.settings import MAX_DECIBEL


# 1. One reporter's submission as the ledger currently holds it.
class ConfidentialRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    encrypted_value_handle: str     # ledger-issued ciphertext handle (hex bytes32)
    public_aux1: int = 0            # public classification hint
    public_aux2: int = 0            # public ordering hint
    description: str = ""
    submitter: str
    created_at: int                 # Unix timestamp
    verified: bool = False
    revealed_value: int = 0         # only authoritative when verified
    location_hint: str = ""

    @property
    def trusted_value(self) -> Optional[int]:
        """The revealed decibel level, or None while the record is unverified."""
        return self.revealed_value if self.verified else None


# 2. User input for a new report, before anything is encrypted.
class ReportDraft(BaseModel):
    label: str
    decibel: int = Field(ge=0, le=MAX_DECIBEL)
    description: str = ""
    public_aux1: int = Field(default=0, ge=0)
    public_aux2: int = Field(default=0, ge=0)

    @field_validator("label")
    @classmethod
    def label_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("label must not be empty")
        return value

    @classmethod
    def from_form(cls, form: Dict[str, object]) -> "ReportDraft":
        """Build a draft from raw form text; the decibel field keeps digits only."""
        data = dict(form)
        raw_decibel = str(data.get("decibel", "") or "")
        digits = re.sub(r"[^\d]", "", raw_decibel)
        data["decibel"] = int(digits) if digits else None
        data.setdefault("label", data.pop("name", ""))
        return cls.model_validate(data)


# 3. Output of the confidential-computation service.
class EncryptedInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    handle: str         # external ciphertext handle, hex
    input_proof: str    # validity proof, hex


class DecryptionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    clear_values: Dict[str, int]
    abi_encoded_clear_values: str
    decryption_proof: str


# 4. The single notification slot shown to observers.
class StatusPhase(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class OperationStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    visible: bool = False
    phase: StatusPhase = StatusPhase.IDLE
    message: str = ""


# 5. Per-operation state machine, returned from every orchestrator call.
class OperationKind(str, Enum):
    CREATE = "create"
    DECRYPT = "decrypt"
    REFRESH = "refresh"
    AVAILABILITY = "availability"


class OperationPhase(str, Enum):
    IDLE = "idle"
    ENCRYPTING = "encrypting"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    CHECKING_ON_CHAIN_STATE = "checking_on_chain_state"
    SHORT_CIRCUIT_VERIFIED = "short_circuit_verified"
    REQUESTING_DECRYPTION = "requesting_decryption"
    SUBMITTING_PROOF = "submitting_proof"
    DONE = "done"


class Operation(BaseModel):
    kind: OperationKind
    record_id: Optional[str] = None
    phase: OperationPhase = OperationPhase.IDLE
    history: List[OperationPhase] = Field(default_factory=lambda: [OperationPhase.IDLE])
    outcome: Optional[str] = None       # "success" | "error" once done
    value: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def advance(self, phase: OperationPhase) -> None:
        self.phase = phase
        self.history.append(phase)

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"


# 6. Derived views.
class AggregateStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_reports: int = 0
    verified_count: int = 0
    avg_decibel: float = 0.0
    max_decibel: int = 0
    recent_activity: int = 0
    approximated_count: int = 0     # records that contributed public_aux1 instead of a revealed value


class HeatmapGrid(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: int = 5
    cells: List[int]
