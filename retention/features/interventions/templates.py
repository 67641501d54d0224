"""
Message template rendering for plays.

Placeholders are written ``{{name}}``. Known names come from the typed
TemplateContext; callers can add more through ``extra``. Names that are
neither known nor supplied stay in the output verbatim and are reported
through ``on_unknown_var`` so a typo in a template is visible instead of
silently producing a blank.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from retention.features.interventions.domain import Member, Play, RiskSnapshot

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

KNOWN_VARS: dict[str, str] = {
    "firstName": "first_name",
    "lastName": "last_name",
    "email": "email",
    "phone": "phone",
    "riskScore": "risk_score",
    "primaryRiskReason": "primary_risk_reason",
    "daysSinceLastVisit": "days_since_last_visit",
}

TemplateValue = str | int | float | None


@dataclass(slots=True)
class TemplateContext:
    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    risk_score: int = 0
    primary_risk_reason: str | None = None
    days_since_last_visit: int | None = None
    extra: dict[str, TemplateValue] = field(default_factory=dict)

    def has(self, name: str) -> bool:
        return name in KNOWN_VARS or name in self.extra

    def value_of(self, name: str) -> TemplateValue:
        if name in self.extra:
            return self.extra[name]
        attr = KNOWN_VARS.get(name)
        return getattr(self, attr) if attr else None


def build_template_context(
    member: Member,
    risk: RiskSnapshot | None,
    extra: Mapping[str, TemplateValue] | None = None,
) -> TemplateContext:
    return TemplateContext(
        first_name=member.first_name,
        last_name=member.last_name,
        email=member.email,
        phone=member.phone,
        risk_score=risk.risk_score if risk else 0,
        primary_risk_reason=risk.primary_risk_reason if risk else None,
        days_since_last_visit=risk.days_since_last_visit if risk else None,
        extra=dict(extra or {}),
    )


def render_template(
    template: str,
    context: TemplateContext,
    on_unknown_var: Callable[[str], None] | None = None,
) -> str:
    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        if context.has(name):
            value = context.value_of(name)
            return "" if value is None else str(value)
        if on_unknown_var:
            on_unknown_var(name)
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_substitute, template)


def render_play_templates(
    play: Play,
    context: TemplateContext,
    on_unknown_var: Callable[[str], None] | None = None,
) -> tuple[str | None, str]:
    """Render a play's (subject, body). Subject is None when the play has none."""
    body = render_template(play.template_body, context, on_unknown_var)
    subject = (
        render_template(play.template_subject, context, on_unknown_var)
        if play.template_subject
        else None
    )
    return subject, body
