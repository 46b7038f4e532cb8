"""Recurring challenge windows and instance construction from templates."""

from datetime import datetime, timedelta

from challenge_engine.challenges.schemas import Challenge, ChallengeTemplate
from challenge_engine.shared.schemas.base import ChallengeStatus, RecurrenceRule
from challenge_engine.shared.utils.datetime_utils import add_months, start_of_day, start_of_month


def next_window(rule: RecurrenceRule, now: datetime) -> tuple[datetime, datetime]:
    """The next ``(start, end)`` window strictly after ``now`` (UTC).

    daily:   next midnight, one day long
    weekly:  next Monday 00:00, seven days long
    monthly: first of next month to first of the month after
    """
    today = start_of_day(now)
    if rule == RecurrenceRule.DAILY:
        start = today + timedelta(days=1)
        return start, start + timedelta(days=1)
    if rule == RecurrenceRule.WEEKLY:
        start = today + timedelta(days=7 - today.weekday())
        return start, start + timedelta(days=7)
    start = add_months(start_of_month(now), 1)
    return start, add_months(start, 1)


def instance_id(template_id: str, start: datetime) -> str:
    """Deterministic id of the instance starting at ``start``."""
    return f"{template_id}-{start:%Y%m%d}"


def build_instance(
    template: ChallengeTemplate,
    start: datetime,
    end: datetime,
    now: datetime,
) -> Challenge:
    """A 'draft' challenge for one window of ``template``."""
    return Challenge(
        id=instance_id(template.id, start),
        title=template.title,
        description=template.description,
        category=template.category,
        difficulty=template.difficulty,
        type=template.type,
        tier=template.tier,
        status=ChallengeStatus.DRAFT,
        start_date=start,
        end_date=end,
        rewards=template.rewards.model_copy(deep=True),
        max_participants=template.max_participants,
        max_progress=template.max_progress,
        time_estimate_minutes=template.time_estimate_minutes,
        template_id=template.id,
        tags=list(template.tags),
        created_by="scheduler",
        created_at=now,
        updated_at=now,
    )
