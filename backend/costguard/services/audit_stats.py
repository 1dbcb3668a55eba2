"""Execution statistics derived from the action audit log."""

from collections import defaultdict
from datetime import date, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from costguard.core.time import utcnow
from costguard.crud import action_audit_log as audit_crud
from costguard.crud import recommendation as recommendation_crud
from costguard.models.action_audit_log import ActionAuditLog
from costguard.schemas.audit import ExecutionStats, PeriodStats, ScenarioSavings, TrendPoint

# Monthly savings estimate for entries with no linked recommendation
SAVINGS_BY_ACTION: dict[str, float] = {
    "stop_instance": 30,
    "terminate_instance": 50,
    "delete_volume": 15,
    "delete_snapshot": 5,
    "release_eip": 4,
    "delete_lb": 25,
    "stop_rds": 45,
    "set_retention": 10,
    "delete_cache": 35,
}
DEFAULT_ACTION_SAVINGS = 25.0
TREND_DAYS = 30


def estimate_action_savings(action: str) -> float:
    return float(SAVINGS_BY_ACTION.get(action, DEFAULT_ACTION_SAVINGS))


def week_start(day: date) -> date:
    """Weeks start on Sunday."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def compute_execution_stats(
    entries: list[ActionAuditLog],
    savings_by_detection: dict[str, float],
    now: datetime,
) -> ExecutionStats:
    """
    Aggregate audit entries into execution statistics.

    Realized savings for a successful entry come from its linked
    recommendation's potential savings, falling back to the per-action
    estimate when no recommendation exists for the detection.
    """
    today = now.date()
    starts = {
        "today": today,
        "this_week": week_start(today),
        "this_month": today.replace(day=1),
        "this_year": today.replace(month=1, day=1),
    }
    periods = {name: PeriodStats() for name in [*starts, "all_time"]}
    by_scenario: dict[str, list[float]] = defaultdict(lambda: [0, 0.0])
    daily: dict[date, list[float]] = defaultdict(lambda: [0, 0.0])

    successful = [entry for entry in entries if entry.success]
    for entry in successful:
        savings = savings_by_detection.get(entry.detection_id or "")
        if savings is None:
            savings = estimate_action_savings(entry.action)
        day = entry.executed_at.date()

        for name, start in starts.items():
            if day >= start:
                periods[name].actions += 1
                periods[name].savings += savings
        periods["all_time"].actions += 1
        periods["all_time"].savings += savings

        scenario = by_scenario[entry.scenario_id or "unknown"]
        scenario[0] += 1
        scenario[1] += savings
        daily[day][0] += 1
        daily[day][1] += savings

    for period in periods.values():
        period.savings = round(period.savings, 2)

    trend: list[TrendPoint] = []
    cumulative = 0.0
    for offset in range(TREND_DAYS - 1, -1, -1):
        day = today - timedelta(days=offset)
        actions, savings = daily.get(day, (0, 0.0))
        cumulative += savings
        trend.append(
            TrendPoint(
                day=day,
                actions=int(actions),
                savings=round(savings, 2),
                cumulative_savings=round(cumulative, 2),
            )
        )

    total = len(entries)
    success_rate = round(len(successful) / total * 100, 1) if total else 100.0

    return ExecutionStats(
        **periods,
        total_executions=total,
        successful_executions=len(successful),
        failed_executions=total - len(successful),
        success_rate=success_rate,
        by_scenario=sorted(
            (
                ScenarioSavings(scenario_id=scenario_id, actions=int(actions), savings=round(savings, 2))
                for scenario_id, (actions, savings) in by_scenario.items()
            ),
            key=lambda item: item.savings,
            reverse=True,
        ),
        trend=trend,
    )


async def get_execution_stats(db: AsyncSession, now: datetime | None = None) -> ExecutionStats:
    entries = await audit_crud.get_all_audit_entries(db)
    savings_by_detection = await recommendation_crud.get_savings_by_detection_ids(
        db, (entry.detection_id for entry in entries if entry.success)
    )
    return compute_execution_stats(entries, savings_by_detection, now or utcnow())
