"""
Intervention routes.

Usage:
    1. POST /interventions/run-daily?tenant_id=...  - Run the daily batch for one tenant
    2. POST /interventions/{id}/approve             - Approve and send a pending intervention
    3. POST /interventions/{id}/cancel              - Cancel a pending intervention
    4. POST /interventions/plays?tenant_id=...      - Create a play for one tenant
    5. POST /interventions/cron/daily               - Scheduler hook; runs all auto tenants
    6. POST /interventions/cron/risk-snapshots      - Scheduler hook; rescores every member
"""

import secrets
from functools import lru_cache

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from retention.config import settings
from retention.db.helpers import DatabaseError
from retention.features.interventions.jobs.daily_job import DailyInterventionJob, build_daily_job
from retention.features.interventions.jobs.risk_snapshot_job import (
    RiskSnapshotJob,
    RiskSnapshotJobError,
)
from retention.features.interventions.providers import (
    DispatchError,
    ProviderConfigurationError,
    ProviderRegistry,
)
from retention.features.interventions.repository import (
    InterventionStore,
    PostgresInterventionStore,
)
from retention.features.interventions.services import (
    InterventionEngine,
    InterventionNotFoundError,
    InterventionStateError,
)
from retention.infrastructure.observability.logging import get_logger

from .schemas import (
    CancelResponse,
    CronRunResponse,
    InterventionResponse,
    PlayCreateRequest,
    PlayResponse,
    RiskSnapshotRunResponse,
    RunDailyResponse,
)

router = APIRouter(prefix="/interventions", tags=["interventions"])
logger = get_logger(__name__)


def get_store() -> InterventionStore:
    return PostgresInterventionStore()


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
    return ProviderRegistry.from_settings()


def get_engine(
    store: InterventionStore = Depends(get_store),
    providers: ProviderRegistry = Depends(get_provider_registry),
) -> InterventionEngine:
    return InterventionEngine(store, providers)


# Jobs are process-wide so the is_running guard spans overlapping requests
@lru_cache(maxsize=1)
def get_daily_job() -> DailyInterventionJob:
    return build_daily_job(get_provider_registry())


@lru_cache(maxsize=1)
def get_risk_snapshot_job() -> RiskSnapshotJob:
    return RiskSnapshotJob(PostgresInterventionStore())


def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    if not settings.CRON_SECRET:
        logger.error("Cron endpoint called but CRON_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron secret not configured"
        )

    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/run-daily", response_model=RunDailyResponse)
async def run_daily(
    tenant_id: str = Query(..., min_length=1),
    force_approval: bool = Query(default=False),
    engine: InterventionEngine = Depends(get_engine),
):
    """
    Run the daily batch for one tenant.

    Raises:
        503: A play uses a channel whose provider is not configured
        500: Store failure outside a single intervention
    """
    try:
        result = await engine.run_daily_for_tenant(tenant_id, force_approval=force_approval)
    except ProviderConfigurationError as e:
        logger.error("Run daily blocked by provider configuration", tenant_id=tenant_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    except DatabaseError as e:
        logger.error("Run daily failed", tenant_id=tenant_id, operation=e.operation, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Daily run failed"
        ) from e

    return RunDailyResponse.from_result(tenant_id, result)


@router.post("/{intervention_id}/approve", response_model=InterventionResponse)
async def approve_intervention(
    intervention_id: str,
    engine: InterventionEngine = Depends(get_engine),
):
    """
    Approve a pending intervention and send it (or schedule it past quiet hours).

    Raises:
        404: Intervention not found
        409: Intervention is not pending approval
        502: Provider rejected the send (intervention recorded as FAILED)
    """
    try:
        intervention = await engine.approve_and_send(intervention_id)
    except InterventionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InterventionStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ProviderConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    except DispatchError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    logger.info(
        "Intervention approved",
        intervention_id=intervention_id,
        status=str(intervention.status),
    )
    return InterventionResponse.from_domain(intervention)


@router.post("/{intervention_id}/cancel", response_model=CancelResponse)
async def cancel_intervention(
    intervention_id: str,
    engine: InterventionEngine = Depends(get_engine),
):
    try:
        canceled = await engine.cancel_intervention(intervention_id)
    except InterventionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return CancelResponse(id=intervention_id, canceled=canceled)


@router.post("/plays", response_model=PlayResponse, status_code=status.HTTP_201_CREATED)
async def create_play(
    request: PlayCreateRequest,
    tenant_id: str = Query(..., min_length=1),
    store: InterventionStore = Depends(get_store),
):
    """
    Create a play for one tenant.

    Raises:
        404: Tenant not found
        500: Store failure
    """
    try:
        if await store.get_tenant(tenant_id) is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=f"Tenant {tenant_id} not found"
            )
        play = await store.insert_play(request.to_play(tenant_id))
    except DatabaseError as e:
        logger.error("Create play failed", tenant_id=tenant_id, operation=e.operation, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create play"
        ) from e

    logger.info(
        "Play created",
        tenant_id=tenant_id,
        play_id=play.id,
        channels=[str(c) for c in play.channels],
    )
    return PlayResponse.from_domain(play)


@router.post(
    "/cron/daily",
    response_model=CronRunResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def cron_daily(job: DailyInterventionJob = Depends(get_daily_job)):
    """Scheduler hook: run every auto-intervention tenant with forced approval."""
    metrics = await job.run_once()
    if metrics.get("skipped"):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job already running")

    return CronRunResponse(
        tenants_processed=metrics["tenants_processed"],
        tenants_failed=metrics["tenants_failed"],
        results=metrics["results"],
    )


@router.post(
    "/cron/risk-snapshots",
    response_model=RiskSnapshotRunResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def cron_risk_snapshots(job: RiskSnapshotJob = Depends(get_risk_snapshot_job)):
    """Scheduler hook: recompute a risk snapshot for every scorable member."""
    try:
        metrics = await job.run_once()
    except RiskSnapshotJobError as e:
        logger.error("Risk snapshot run failed", operation=e.operation, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Risk snapshot run failed"
        ) from e

    if metrics.get("skipped"):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job already running")

    return RiskSnapshotRunResponse(
        tenants_processed=metrics["tenants_processed"],
        members_scored=metrics["members_scored"],
        members_failed=metrics["members_failed"],
        errors=metrics["errors"],
    )
