"""Latency samples shared by all profiler workers, and their CSV form."""

from __future__ import annotations

import csv
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from statistics import mean
from typing import Any, Iterable


logger = logging.getLogger(__name__)

DEFAULT_CSV_FILE = "pc_profiler.csv"
CSV_HEADER = ["Timestamp", "ResponseTime"]


@dataclass(frozen=True)
class ExecutionSample:
    timestamp: datetime
    response_time_s: float


def format_timestamp(value: datetime) -> str:
    # RFC 3339 with offset and microseconds; naive datetimes are taken as local time.
    return value.astimezone().isoformat(timespec="microseconds")


def write_samples_csv(path: str | Path, samples: Iterable[ExecutionSample]) -> int:
    """Overwrite ``path`` with one row per sample. Returns the row count."""
    rows = 0
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for sample in samples:
            writer.writerow([format_timestamp(sample.timestamp), f"{sample.response_time_s:f}"])
            rows += 1
    return rows


def read_samples_csv(path: str | Path) -> list[ExecutionSample]:
    samples: list[ExecutionSample] = []
    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header != CSV_HEADER:
            raise ValueError(f"Unexpected CSV header in {path}: {header!r}")
        for row in reader:
            if not row:
                continue
            samples.append(
                ExecutionSample(
                    timestamp=datetime.fromisoformat(row[0]),
                    response_time_s=float(row[1]),
                )
            )
    return samples


class ExecutionLog:
    """Append-only sample list guarded by a single lock.

    The final flush runs under the same lock as appends, so a sample is
    either in the persisted file or refused, never half-written. After
    ``close_and_persist`` the log accepts no more samples.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._samples: list[ExecutionSample] = []
        self._closed = False

    def append(self, sample: ExecutionSample) -> bool:
        with self._lock:
            if self._closed:
                logger.debug("Dropping sample recorded after the final flush.")
                return False
            self._samples.append(sample)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> list[ExecutionSample]:
        with self._lock:
            return list(self._samples)

    def persist(self, path: str | Path) -> bool:
        with self._lock:
            return self._write_locked(path)

    def close_and_persist(self, path: str | Path) -> bool:
        """Perform the one final flush. Later calls do nothing and return False."""
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            return self._write_locked(path)

    def _write_locked(self, path: str | Path) -> bool:
        try:
            rows = write_samples_csv(path, self._samples)
        except OSError as exc:
            logger.error("Failed to write CSV file %s: %s", path, exc)
            return False
        logger.info("Saved %d samples to %s", rows, path)
        return True


def percentile(values: list[float], p: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    rank = (len(ordered) - 1) * p
    low = int(rank)
    high = min(low + 1, len(ordered) - 1)
    frac = rank - low
    return ordered[low] * (1 - frac) + ordered[high] * frac


def summarize_samples(samples: list[ExecutionSample], elapsed_s: float) -> dict[str, Any]:
    latencies = [s.response_time_s for s in samples]
    completed = len(latencies)
    return {
        "completed": completed,
        "elapsed_s": elapsed_s,
        "ops_per_sec": (completed / elapsed_s) if elapsed_s > 0 else 0.0,
        "lat_mean": mean(latencies) if latencies else 0.0,
        "lat_p50": percentile(latencies, 0.50),
        "lat_p95": percentile(latencies, 0.95),
        "lat_p99": percentile(latencies, 0.99),
        "lat_max": max(latencies) if latencies else 0.0,
    }
