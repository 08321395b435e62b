from typing import List, Optional

from uagents import Model


# 1. A sensor node or client asks the reporter to file a confidential reading.
class NoiseReportRequest(Model):
    label: str              # short public place name
    decibel: int            # plaintext reading, encrypted before it leaves the reporter
    description: str = ""
    public_aux1: int = 0
    public_aux2: int = 0
    record_id: Optional[str] = None   # set when retrying an earlier submission


class ReportReceipt(Model):
    record_id: Optional[str]
    status: str             # "success" | "error"
    message: str


# 2. Reveal a record through verified decryption.
class RevealRequest(Model):
    record_id: str


class RevealResponse(Model):
    record_id: str
    status: str
    verified: bool
    value: Optional[int]
    message: str


# 3. Aggregated view of the ledger.
class StatsRequest(Model):
    include_heatmap: bool = False


class StatsResponse(Model):
    total_reports: int
    verified_count: int
    avg_decibel: float
    max_decibel: int
    recent_activity: int
    approximated_count: int
    heatmap: List[int] = []
