"""Productivity summaries computed from the local dataset."""

from datetime import date, timedelta
from typing import Any, Optional

from .types import StoreData, parse_timestamp, today
from .validation import PRIORITIES


def _day_of(ts: Any) -> Optional[str]:
    """YYYY-MM-DD of an ISO timestamp, or None."""
    if not isinstance(ts, str) or not ts:
        return None
    try:
        return parse_timestamp(ts).date().isoformat()
    except ValueError:
        return None


def _average(values: list[float]) -> float:
    if not values:
        return 0
    return round(sum(values) / len(values), 1)


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def week_bounds(weeks_back: int = 0, as_of: Optional[str] = None) -> tuple[str, str]:
    """Monday and Sunday of the week ``weeks_back`` weeks before ``as_of``."""
    day = date.fromisoformat(as_of or today())
    start = day - timedelta(days=day.weekday(), weeks=weeks_back)
    return start.isoformat(), (start + timedelta(days=6)).isoformat()


def daily_summary(document: StoreData, as_of: Optional[str] = None) -> dict[str, Any]:
    day = as_of or today()
    data = document.data

    tasks = [t for t in data["tasks"] if not t.get("archivedAt")]
    pending = [t for t in tasks if not t.get("completed")]
    completed_today = [t for t in tasks if _day_of(t.get("completedAt")) == day]
    by_priority = {p: {"total": 0, "completed": 0} for p in PRIORITIES}
    for task in tasks:
        counts = by_priority.get(task.get("priority"))
        if counts is None:
            continue
        counts["total"] += 1
        if task.get("completed"):
            counts["completed"] += 1

    habits = data["habits"]
    habits_done = sum(1 for h in habits if (h.get("completions") or {}).get(day))

    journal = next((j for j in data["journal"] if j.get("date") == day), None)

    sessions = [s for s in data["focusSessions"] if _day_of(s.get("startedAt")) == day]
    focus_minutes = round(sum(s.get("duration", 0) for s in sessions) / 60)

    stats = data["gamification"]
    return {
        "date": day,
        "tasks": {
            "pending": len(pending),
            "completedToday": len(completed_today),
            "byPriority": by_priority,
            "highPriorityPending": sum(1 for t in pending if t.get("priority") in ("P1", "P2")),
        },
        "habits": {
            "total": len(habits),
            "completedToday": habits_done,
            "completionRate": _percent(habits_done, len(habits)),
        },
        "journal": (
            {"mood": journal.get("mood"), "energy": journal.get("energy"), "hasEntry": True}
            if journal else {"hasEntry": False}
        ),
        "focus": {"sessions": len(sessions), "minutes": focus_minutes},
        "gamification": {
            "level": stats.get("level", 1),
            "currentXP": stats.get("currentXP", 0),
            "currentStreak": stats.get("currentStreak", 0),
            "achievementsUnlocked": len(stats.get("achievements") or []),
        },
    }


def weekly_summary(
    document: StoreData, weeks_back: int = 0, as_of: Optional[str] = None,
) -> dict[str, Any]:
    start, end = week_bounds(weeks_back, as_of)
    data = document.data

    def in_week(day: Optional[str]) -> bool:
        return day is not None and start <= day <= end

    week_tasks = [t for t in data["tasks"] if in_week(_day_of(t.get("completedAt")))]

    first = date.fromisoformat(start)
    week_days = [(first + timedelta(days=i)).isoformat() for i in range(7)]
    habits = data["habits"]
    possible = len(habits) * len(week_days)
    done = sum(
        1 for h in habits for day in week_days if (h.get("completions") or {}).get(day)
    )

    entries = [j for j in data["journal"] if in_week(j.get("date"))]
    sessions = [s for s in data["focusSessions"] if in_week(_day_of(s.get("startedAt")))]
    focus_minutes = round(sum(s.get("duration", 0) for s in sessions) / 60)

    return {
        "weekStart": start,
        "weekEnd": end,
        "tasks": {
            "completed": len(week_tasks),
            "byPriority": {
                p: sum(1 for t in week_tasks if t.get("priority") == p) for p in PRIORITIES
            },
        },
        "habits": {
            "completions": done,
            "possible": possible,
            "completionRate": _percent(done, possible),
        },
        "journal": {
            "entries": len(entries),
            "averageMood": _average([e.get("mood", 0) for e in entries]),
            "averageEnergy": _average([e.get("energy", 0) for e in entries]),
        },
        "focus": {
            "sessions": len(sessions),
            "totalMinutes": focus_minutes,
            "averagePerDay": round(focus_minutes / 7),
        },
    }


def productivity_stats(document: StoreData) -> dict[str, Any]:
    data = document.data
    stats = data["gamification"]
    focus = data["focusStats"]

    tasks = data["tasks"]
    completed = sum(1 for t in tasks if t.get("completed"))
    top_streaks = sorted(data["habits"], key=lambda h: h.get("streak", 0), reverse=True)[:3]

    return {
        "gamification": {
            "level": stats.get("level", 1),
            "totalXP": stats.get("totalXP", 0),
            "currentStreak": stats.get("currentStreak", 0),
            "bestStreak": stats.get("bestStreak", 0),
            "achievementsUnlocked": len(stats.get("achievements") or []),
        },
        "totals": {
            "tasks": {"total": len(tasks), "completed": completed},
            "notes": len(data["notes"]),
            "bookmarks": len(data["bookmarks"]),
            "habits": len(data["habits"]),
            "journalEntries": stats.get("journalEntries", 0),
            "focusSessions": focus.get("totalSessions", 0),
            "focusMinutes": round(focus.get("totalFocusTime", 0) / 60),
        },
        "topHabitStreaks": [
            {"name": h.get("name"), "streak": h.get("streak", 0)} for h in top_streaks
        ],
        "taskCompletionRate": _percent(completed, len(tasks)),
    }
