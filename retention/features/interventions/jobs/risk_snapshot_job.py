"""
Risk snapshot job.

Recomputes the churn profile of every active or inactive member and writes
a fresh RiskSnapshot row. The daily intervention run reads the most recent
snapshot per member, so this job runs ahead of it.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime

from retention.db.helpers import DatabaseError
from retention.db.pool import db_pool
from retention.features.interventions.repository import (
    InterventionStore,
    PostgresInterventionStore,
)
from retention.features.interventions.scoring import build_member_profile, snapshot_from_profile
from retention.infrastructure.observability.logging import get_logger, log_job_run

logger = get_logger(__name__)

JOB_NAME = "risk_snapshots"


class RiskSnapshotJobError(Exception):
    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class RiskSnapshotMetrics:
    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.tenants_processed = 0
        self.members_scored = 0
        self.members_failed = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_failure(self, tenant_id: str, member_id: str | None, error: str):
        self.members_failed += 1
        self.errors.append({"tenant_id": tenant_id, "member_id": member_id, "error": error})
        logger.warning(
            "Risk snapshot failed",
            tenant_id=tenant_id,
            member_id=member_id,
            error=error,
            job_run=JOB_NAME,
        )

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": JOB_NAME,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "tenants_processed": self.tenants_processed,
            "members_scored": self.members_scored,
            "members_failed": self.members_failed,
        }


class RiskSnapshotJob:
    def __init__(
        self,
        store: InterventionStore,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.clock = clock or (lambda: datetime.now(UTC))
        self.is_running = False
        self.job_metrics = RiskSnapshotMetrics()

    async def run_once(self) -> dict:
        """
        Score every member of every tenant and persist one snapshot each.

        A member whose scoring or insert fails is recorded and skipped; a
        tenant whose activity cannot be read is recorded and the next tenant
        still runs.
        """
        if self.is_running:
            logger.warning("Risk snapshot job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            try:
                tenants = await self.store.list_tenants()
            except DatabaseError as e:
                raise RiskSnapshotJobError(
                    f"Failed to list tenants: {e}", operation="list_tenants"
                ) from e

            for tenant in tenants:
                await self._score_tenant(tenant.id)
                self.job_metrics.tenants_processed += 1

            self.job_metrics.finalize()
            metrics = self.job_metrics.to_dict()
            logger.info("Risk snapshot job completed", **metrics)
            return {**metrics, "errors": self.job_metrics.errors}

        finally:
            self.is_running = False

    async def _score_tenant(self, tenant_id: str) -> None:
        try:
            activities = await self.store.list_member_activity(tenant_id)
        except DatabaseError as e:
            self.job_metrics.record_failure(tenant_id, None, f"Database error: {e}")
            return

        now = self.clock()
        for activity in activities:
            try:
                profile = build_member_profile(activity, as_of=now.date())
                snapshot = snapshot_from_profile(profile, computed_at=now)
                await self.store.insert_risk_snapshot(snapshot)
                self.job_metrics.members_scored += 1
            except DatabaseError as e:
                self.job_metrics.record_failure(
                    tenant_id, activity.member_id, f"Database error: {e}"
                )
            except (ValueError, TypeError) as e:
                self.job_metrics.record_failure(
                    tenant_id, activity.member_id, f"Invalid activity: {type(e).__name__}: {e}"
                )


async def run_risk_snapshots() -> None:
    """Worker entrypoint: score all members with a managed db pool."""
    start = time.time()
    await db_pool.initialize()
    try:
        metrics = await RiskSnapshotJob(PostgresInterventionStore()).run_once()
        log_job_run(
            JOB_NAME,
            success=True,
            duration_ms=(time.time() - start) * 1000,
            members_scored=metrics.get("members_scored", 0),
            members_failed=metrics.get("members_failed", 0),
        )
    except RiskSnapshotJobError as e:
        log_job_run(JOB_NAME, success=False, duration_ms=(time.time() - start) * 1000, error=str(e))
        raise
    finally:
        await db_pool.close()
