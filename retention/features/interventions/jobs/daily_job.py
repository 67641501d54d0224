"""
Daily intervention job.

Runs the engine for every tenant with auto-interventions enabled. Every
intervention it creates lands in PENDING_APPROVAL so a human reviews
machine-initiated outreach before anything is sent.
"""

import time
from datetime import UTC, datetime

from retention.db.helpers import DatabaseError
from retention.db.pool import db_pool
from retention.features.interventions.domain import RunDailyResult
from retention.features.interventions.providers import ProviderConfigurationError, ProviderRegistry
from retention.features.interventions.repository import (
    InterventionStore,
    PostgresInterventionStore,
)
from retention.features.interventions.services import InterventionEngine
from retention.infrastructure.observability.logging import get_logger, log_job_run

logger = get_logger(__name__)

JOB_NAME = "daily_interventions"


class DailyInterventionJobError(Exception):
    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class DailyInterventionMetrics:
    """Per-run counters aggregated across tenants."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.tenants_processed = 0
        self.tenants_failed = 0
        self.total_duration_seconds = 0.0
        self.totals = RunDailyResult()
        self.results: list[dict] = []

    def record_success(self, tenant_id: str, result: RunDailyResult):
        self.tenants_processed += 1
        for key, value in result.to_dict().items():
            setattr(self.totals, key, getattr(self.totals, key) + value)
        self.results.append({"tenant_id": tenant_id, **result.to_dict()})

    def record_failure(self, tenant_id: str, error: str):
        self.tenants_processed += 1
        self.tenants_failed += 1
        self.results.append({"tenant_id": tenant_id, "error": error})
        logger.warning(
            "Daily interventions failed for tenant",
            tenant_id=tenant_id,
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
            "tenants_failed": self.tenants_failed,
            **{f"total_{key}": value for key, value in self.totals.to_dict().items()},
        }


class DailyInterventionJob:
    def __init__(self, engine: InterventionEngine, store: InterventionStore):
        self.engine = engine
        self.store = store
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = DailyInterventionMetrics()

    async def run_once(self) -> dict:
        """
        Run the engine once for every auto-intervention tenant.

        A failing tenant is recorded and the remaining tenants still run.

        Returns:
            Dict: Job metrics plus one result entry per tenant
        """
        if self.is_running:
            logger.warning("Daily intervention job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            try:
                tenants = await self.store.list_auto_intervention_tenants()
            except DatabaseError as e:
                raise DailyInterventionJobError(
                    f"Failed to list tenants: {e}", operation="list_tenants"
                ) from e

            if not tenants:
                logger.info("No tenants have auto-interventions enabled")

            for tenant in tenants:
                try:
                    result = await self.engine.run_daily_for_tenant(tenant.id, force_approval=True)
                    self.job_metrics.record_success(tenant.id, result)
                except ProviderConfigurationError as e:
                    self.job_metrics.record_failure(tenant.id, f"Provider not configured: {e}")
                except DatabaseError as e:
                    self.job_metrics.record_failure(tenant.id, f"Database error: {e}")
                except Exception as e:
                    self.job_metrics.record_failure(
                        tenant.id, f"Unexpected error: {type(e).__name__}: {e}"
                    )

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)

            metrics = self.job_metrics.to_dict()
            logger.info("Daily intervention job completed", **metrics)
            return {**metrics, "results": self.job_metrics.results}

        finally:
            self.is_running = False


def build_daily_job(providers: ProviderRegistry | None = None) -> DailyInterventionJob:
    if providers is None:
        providers = ProviderRegistry.from_settings()
    store = PostgresInterventionStore()
    engine = InterventionEngine(store, providers)
    return DailyInterventionJob(engine, store)


async def run_daily_interventions() -> None:
    """Worker entrypoint: one pass over all tenants with a managed db pool."""
    start = time.time()
    await db_pool.initialize()
    try:
        metrics = await build_daily_job().run_once()
        log_job_run(
            JOB_NAME,
            success=True,
            duration_ms=(time.time() - start) * 1000,
            tenants_processed=metrics.get("tenants_processed", 0),
            tenants_failed=metrics.get("tenants_failed", 0),
        )
    except DailyInterventionJobError as e:
        log_job_run(JOB_NAME, success=False, duration_ms=(time.time() - start) * 1000, error=str(e))
        raise
    finally:
        await db_pool.close()
