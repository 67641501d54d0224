from .daily_job import (
    DailyInterventionJob,
    DailyInterventionJobError,
    DailyInterventionMetrics,
    build_daily_job,
    run_daily_interventions,
)
from .risk_snapshot_job import (
    RiskSnapshotJob,
    RiskSnapshotJobError,
    RiskSnapshotMetrics,
    run_risk_snapshots,
)

__all__ = [
    "DailyInterventionJob",
    "DailyInterventionJobError",
    "DailyInterventionMetrics",
    "RiskSnapshotJob",
    "RiskSnapshotJobError",
    "RiskSnapshotMetrics",
    "build_daily_job",
    "run_daily_interventions",
    "run_risk_snapshots",
]
