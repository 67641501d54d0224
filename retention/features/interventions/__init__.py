"""
Retention intervention feature package.

Everything related to deciding and executing member outreach lives here:
scoring models, guardrails, template rendering, the store contract and its
Postgres implementation, channel providers, the engine, jobs and the API
router.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as interventions_router  # noqa: F401
from .jobs.daily_job import DailyInterventionJob, run_daily_interventions  # noqa: F401
from .services.engine import InterventionEngine  # noqa: F401
