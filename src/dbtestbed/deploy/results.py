"""Result models for dbtestbed.

Per-backend results roll up into one ``TestbedRunResult``. The CLI prints
them as a rich table or dumps them with ``model_dump_json()``; CI only needs
``overall_status``.

Status rules:
    - test command failed → FAILED
    - any other error (start, address, readiness, config) → ERROR
    - not attempted because an earlier backend failed → SKIPPED
    - otherwise → PASSED
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class OverallStatus(str, Enum):
    """Overall status of a backend or a run."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"
    PENDING = "PENDING"


class BackendResult(BaseModel):
    """Outcome of one fixture orchestration (or one local test run)."""

    backend: str
    mode: str = "docker"  # docker, local
    image: str = ""
    container_name: str | None = None
    address: str | None = None
    connection_url: str | None = None
    startup_ms: float = 0.0
    duration_seconds: float = 0.0
    returncode: int | None = None
    skipped: bool = False
    overall_status: OverallStatus = OverallStatus.PENDING
    error: str | None = None
    error_type: str | None = None

    def compute_status(self) -> OverallStatus:
        """Compute overall status from the recorded outcome."""
        if self.skipped:
            return OverallStatus.SKIPPED
        if self.error_type == "TestSuiteFailedError":
            return OverallStatus.FAILED
        if self.error:
            return OverallStatus.ERROR
        return OverallStatus.PASSED


class TestbedRunResult(BaseModel):
    """Result of a run across one or more backends."""

    __test__ = False  # not a pytest test class

    run_id: str
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0
    backends: list[BackendResult] = Field(default_factory=list)
    overall_status: OverallStatus = OverallStatus.PENDING
    summary: str = ""
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.overall_status in (OverallStatus.FAILED, OverallStatus.ERROR)

    def mark_complete(self) -> None:
        """Finalize run: compute durations, statuses, summary."""
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        for br in self.backends:
            br.overall_status = br.compute_status()

        attempted = [b for b in self.backends if b.overall_status != OverallStatus.SKIPPED]
        if self.error or any(b.overall_status == OverallStatus.ERROR for b in attempted):
            self.overall_status = OverallStatus.ERROR
        elif any(b.overall_status == OverallStatus.FAILED for b in attempted):
            self.overall_status = OverallStatus.FAILED
        elif not attempted:
            self.overall_status = OverallStatus.SKIPPED
        else:
            self.overall_status = OverallStatus.PASSED

        passed_count = sum(1 for b in self.backends if b.overall_status == OverallStatus.PASSED)
        details = ", ".join(f"{b.backend}: {b.overall_status.value}" for b in self.backends)
        self.summary = (
            f"{passed_count}/{len(self.backends)} backends passed "
            f"({details}) in {self.duration_seconds:.1f}s"
        )
