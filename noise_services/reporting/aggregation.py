import hashlib
import time
from typing import Iterable, Optional, Sequence

import numpy as np

from config.settings import MAX_DECIBEL
from noise_services.models import AggregateStats, ConfidentialRecord, HeatmapGrid

# --- Tunable Parameters ---
RECENT_WINDOW_SECONDS = 60 * 60 * 24
AREA_COUNT = 100
GRID_SIZE = 5


def location_hint(record_id: str) -> str:
    """
    Coarse, non-identifying area label for a record.

    Derived from the record id only, so it is stable across refreshes and
    carries nothing about where the reading was actually taken.
    """
    return f"Area {area_index(record_id)}"


def area_index(record_id: str) -> int:
    digest = hashlib.sha256(record_id.encode()).digest()
    return int.from_bytes(digest[:4], "big") % AREA_COUNT


def effective_value(record: ConfidentialRecord) -> int:
    """Revealed value for verified records, the public hint otherwise."""
    return record.revealed_value if record.verified else record.public_aux1


def compute_stats(records: Sequence[ConfidentialRecord], now: Optional[float] = None) -> AggregateStats:
    """
    Summary statistics over the current record set.

    Averages and maxima mix verified values with public_aux1 fallbacks for
    unverified records; `approximated_count` says how many fallbacks went in.
    The recency cutoff is evaluated against the clock on every call.
    """
    if now is None:
        now = time.time()

    total = len(records)
    if total == 0:
        return AggregateStats()

    values = np.array([effective_value(r) for r in records], dtype=float)
    verified_count = sum(1 for r in records if r.verified)
    recent = sum(1 for r in records if now - r.created_at < RECENT_WINDOW_SECONDS)

    return AggregateStats(
        total_reports=total,
        verified_count=verified_count,
        avg_decibel=float(values.mean()),
        max_decibel=int(values.max()),
        recent_activity=recent,
        approximated_count=total - verified_count,
    )


def build_heatmap(records: Iterable[ConfidentialRecord], max_decibel: int = MAX_DECIBEL) -> HeatmapGrid:
    """
    5x5 intensity grid (0..100) keyed by each record's coarse area.

    Cells without records stay at 0.
    """
    if max_decibel <= 0:
        raise ValueError(f"max_decibel must be positive, got {max_decibel}")
    cell_count = GRID_SIZE * GRID_SIZE
    records = list(records)
    if not records:
        return HeatmapGrid(size=GRID_SIZE, cells=[0] * cell_count)

    cells = np.array([area_index(r.id) % cell_count for r in records])
    values = np.array([effective_value(r) for r in records], dtype=float)

    sums = np.bincount(cells, weights=values, minlength=cell_count)
    counts = np.bincount(cells, minlength=cell_count)
    means = np.divide(sums, counts, out=np.zeros(cell_count), where=counts > 0)

    intensity = np.clip(np.rint(means / max_decibel * 100), 0, 100).astype(int)
    return HeatmapGrid(size=GRID_SIZE, cells=intensity.tolist())
