"""
Per-run metrics shared by the periodic jobs.
"""

from collections import Counter
from datetime import UTC, datetime


class JobMetrics:
    """Counters plus a capped error list for one job run."""

    MAX_ERRORS = 50

    def __init__(self, job_name: str, fields: tuple[str, ...] = ()):
        self.job_name = job_name
        self.fields = fields
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.total_duration_seconds = 0.0
        self.counters: Counter[str] = Counter({name: 0 for name in self.fields})
        self.errors: list[dict] = []

    def incr(self, name: str, amount: int = 1):
        self.counters[name] += amount

    def add(self, values: dict[str, int]):
        for name, amount in values.items():
            self.counters[name] += amount

    def record_error(self, subject_id: str, error: Exception):
        self.counters["error_count"] += 1
        if len(self.errors) < self.MAX_ERRORS:
            self.errors.append(
                {
                    "id": subject_id,
                    "error": str(error),
                    "error_type": type(error).__name__,
                    "timestamp": datetime.now(UTC).isoformat(),
                }
            )

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": self.job_name,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            **self.counters,
            "errors": list(self.errors),
        }
