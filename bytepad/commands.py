"""
The command table: every operation callers can invoke by name.

Entity mutations and listings go through the BackendChain (desktop app
first, file store otherwise) and are projected through the view
functions below, so callers see the same fields whichever backend
served the call. Summaries and sync commands read the file store.

Handlers raise BytepadError subclasses for failures; the command
boundary (api.Bytepad.execute) turns those into failed results.
"""

import logging
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Mapping, Optional

from .backends import BackendChain, Served, calculate_streak
from .errors import AuthError, ConflictError, NotFoundError, ValidationError
from .file_store import FileStore, SyncConfigStore
from .local_api import LocalApiClient
from .scheduler import AutoSyncScheduler
from .summaries import daily_summary, productivity_stats, weekly_summary
from .sync import SyncOutcome, SyncReconciler
from .types import MIN_SYNC_INTERVAL, ToolResult, today, utc_now
from .validation import (
    IDEA_COLORS,
    MAX_IDEA_LENGTH,
    PRIORITIES,
    extract_domain,
    int_arg,
    is_valid_energy,
    is_valid_frequency,
    is_valid_mood,
    is_valid_priority,
    is_valid_url,
    parse_tags,
    require_string,
    sanitize,
)

logger = logging.getLogger(__name__)

Args = Mapping[str, Any]

# Command names, in registration order
COMMANDS: list[str] = []


def command(fn: Callable[..., Awaitable[ToolResult]]) -> Callable[..., Awaitable[ToolResult]]:
    COMMANDS.append(fn.__name__)
    return fn


# -- Views --

def note_view(note: dict) -> dict:
    return {
        "id": note.get("id"),
        "title": note.get("title"),
        "tags": note.get("tags") or [],
        "pinned": bool(note.get("pinned")),
    }


def note_preview(note: dict) -> dict:
    content = note.get("content") or ""
    return {
        **note_view(note),
        "preview": content[:100] + ("..." if len(content) > 100 else ""),
        "updatedAt": note.get("updatedAt"),
    }


def task_view(task: dict) -> dict:
    return {
        "id": task.get("id"),
        "title": task.get("title"),
        "priority": task.get("priority"),
        "completed": bool(task.get("completed")),
        "deadline": task.get("deadline"),
        "tags": task.get("tags") or [],
        "subtasks": len(task.get("subtasks") or []),
    }


def habit_view(habit: dict, as_of: Optional[str] = None) -> dict:
    completions = habit.get("completions") or {}
    return {
        "id": habit.get("id"),
        "name": habit.get("name"),
        "frequency": habit.get("frequency"),
        "category": habit.get("category"),
        "completedToday": completions.get(as_of or today()) is True,
        "streak": calculate_streak(completions, as_of),
    }


def journal_view(entry: dict) -> dict:
    return {
        "id": entry.get("id"),
        "date": entry.get("date"),
        "mood": entry.get("mood"),
        "energy": entry.get("energy"),
    }


def bookmark_view(bookmark: dict) -> dict:
    return {
        "id": bookmark.get("id"),
        "title": bookmark.get("title"),
        "url": bookmark.get("url"),
        "domain": bookmark.get("domain"),
        "collection": bookmark.get("collection"),
        "tags": bookmark.get("tags") or [],
        "isRead": bool(bookmark.get("isRead")),
        "createdAt": bookmark.get("createdAt"),
    }


def idea_view(idea: dict) -> dict:
    return {
        "id": idea.get("id"),
        "title": idea.get("title"),
        "content": idea.get("content"),
        "color": idea.get("color"),
    }


def _via(served: Served) -> str:
    if served.backend == "local":
        return "synced to app & Gist"
    return "stored locally"


def _find(items: list[dict], id: str, what: str) -> dict:
    for item in items:
        if item.get("id") == id:
            return item
    raise NotFoundError(f"{what} not found: {id}")


def _date_arg(args: Args, key: str = "date") -> str:
    """A YYYY-MM-DD argument, defaulting to today."""
    value = sanitize(args.get(key))
    if not value:
        return today()
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid date: {value} (expected YYYY-MM-DD)") from None


def _priority_rank(task: dict) -> int:
    priority = task.get("priority")
    return PRIORITIES.index(priority) if priority in PRIORITIES else len(PRIORITIES)


def _since(days: int) -> str:
    return (date.fromisoformat(today()) - timedelta(days=days)).isoformat()


def _sync_result(outcome: SyncOutcome) -> ToolResult:
    return ToolResult(True, outcome.message, outcome.to_dict())


class Commands:
    """Handlers for every named command."""

    def __init__(
        self,
        *,
        store: FileStore,
        chain: BackendChain,
        local: LocalApiClient,
        sync_config: SyncConfigStore,
        reconciler: SyncReconciler,
        scheduler: AutoSyncScheduler,
    ):
        self._store = store
        self._chain = chain
        self._local = local
        self._sync_config = sync_config
        self._reconciler = reconciler
        self._scheduler = scheduler

    async def dispatch(self, name: str, args: Args) -> ToolResult:
        if name not in COMMANDS:
            raise ValidationError(f"Unknown command: {name}")
        return await getattr(self, name)(args)

    async def _list(self, collection: str) -> list[dict]:
        return (await self._chain.list(collection)).value

    # -- Notes --

    @command
    async def create_note(self, args: Args) -> ToolResult:
        title = require_string(args, "title", "Note title")
        fields = {
            "title": title,
            "content": args["content"] if isinstance(args.get("content"), str) else "",
            "tags": parse_tags(args.get("tags")),
            "pinned": args.get("pinned") is True,
        }
        served = await self._chain.create("notes", fields)
        return ToolResult(True, f'Note created: "{title}" - {_via(served)}', note_view(served.value))

    @command
    async def update_note(self, args: Args) -> ToolResult:
        id = require_string(args, "id", "Note ID")
        changes: dict[str, Any] = {}
        if "title" in args:
            changes["title"] = require_string(args, "title", "Note title")
        if isinstance(args.get("content"), str):
            changes["content"] = args["content"]
        if "tags" in args:
            changes["tags"] = parse_tags(args.get("tags"))
        if "pinned" in args:
            changes["pinned"] = args.get("pinned") is True
        if not changes:
            raise ValidationError("No changes provided")
        served = await self._chain.update("notes", id, changes)
        return ToolResult(True, f"Note updated - {_via(served)}", {"id": id, "updates": changes})

    @command
    async def delete_note(self, args: Args) -> ToolResult:
        id = require_string(args, "id", "Note ID")
        served = await self._chain.delete("notes", id)
        return ToolResult(
            True, f"Note deleted - {_via(served)}",
            {"id": id, "title": served.value.get("title")},
        )

    @command
    async def get_note(self, args: Args) -> ToolResult:
        id = require_string(args, "id", "Note ID")
        note = _find(await self._list("notes"), id, "Note")
        return ToolResult(True, f'Found note: "{note.get("title")}"', note)

    @command
    async def search_notes(self, args: Args) -> ToolResult:
        query = require_string(args, "query", "Search query").lower()
        limit = int_arg(args, "limit", 10)

        def matches(note: dict) -> bool:
            return (
                query in (note.get("title") or "").lower()
                or query in (note.get("content") or "").lower()
                or any(query in t.lower() for t in note.get("tags") or [])
            )

        results = [note_preview(n) for n in await self._list("notes") if matches(n)][:limit]
        return ToolResult(True, f'Found {len(results)} notes matching "{query}"', results)

    # -- Tasks --

    @command
    async def create_task(self, args: Args) -> ToolResult:
        title = require_string(args, "title", "Task title")
        priority = args["priority"] if is_valid_priority(args.get("priority")) else "P3"
        fields: dict[str, Any] = {"title": title, "priority": priority}
        description = sanitize(args.get("description"))
        if description:
            fields["description"] = description
        deadline = sanitize(args.get("deadline"))
        if deadline:
            fields["deadline"] = deadline
        tags = parse_tags(args.get("tags"))
        if tags:
            fields["tags"] = tags
        served = await self._chain.create("tasks", fields)
        return ToolResult(
            True, f'Task created: "{title}" ({priority}) - {_via(served)}',
            task_view(served.value),
        )

    @command
    async def update_task(self, args: Args) -> ToolResult:
        id = require_string(args, "id", "Task ID")
        changes: dict[str, Any] = {}
        if "title" in args:
            changes["title"] = require_string(args, "title", "Task title")
        if "description" in args:
            changes["description"] = sanitize(args.get("description"))
        if is_valid_priority(args.get("priority")):
            changes["priority"] = args["priority"]
        if "deadline" in args:
            changes["deadline"] = sanitize(args.get("deadline")) or None
        if "tags" in args:
            changes["tags"] = parse_tags(args.get("tags"))
        if not changes:
            raise ValidationError("No changes provided")
        served = await self._chain.update("tasks", id, changes)
        return ToolResult(True, f"Task updated - {_via(served)}", {"id": id, "updates": changes})

    @command
    async def toggle_task(self, args: Args) -> ToolResult:
        id = require_string(args, "id", "Task ID")
        served = await self._chain.toggle("tasks", id)
        completed = bool(served.value.get("completed"))
        state = "completed" if completed else "uncompleted"
        return ToolResult(True, f"Task {state} - {_via(served)}", {"id": id, "completed": completed})

    @command
    async def delete_task(self, args: Args) -> ToolResult:
        id = require_string(args, "id", "Task ID")
        served = await self._chain.delete("tasks", id)
        return ToolResult(
            True, f"Task deleted - {_via(served)}",
            {"id": id, "title": served.value.get("title")},
        )

    @command
    async def get_tasks(self, args: Args) -> ToolResult:
        status = args.get("filter") or "all"
        if status not in ("all", "active", "completed"):
            raise ValidationError(f"Invalid filter: {status} (expected all, active or completed)")
        limit = int_arg(args, "limit")

        tasks = [t for t in await self._list("tasks") if not t.get("archivedAt")]
        if status == "active":
            tasks = [t for t in tasks if not t.get("completed")]
        elif status == "completed":
            tasks = [t for t in tasks if t.get("completed")]
        tasks.sort(key=_priority_rank)
        if limit:
            tasks = tasks[:limit]
        return ToolResult(True, f"Found {len(tasks)} tasks", [task_view(t) for t in tasks])

    @command
    async def get_tasks_by_priority(self, args: Args) -> ToolResult:
        priority = args.get("priority")
        if not is_valid_priority(priority):
            raise ValidationError("Valid priority (P1-P4) is required")
        include_completed = args.get("includeCompleted") is True

        tasks = [
            t for t in await self._list("tasks")
            if t.get("priority") == priority and not t.get("archivedAt")
        ]
        if not include_completed:
            tasks = [t for t in tasks if not t.get("completed")]
        return ToolResult(
            True, f"Found {len(tasks)} {priority} tasks", [task_view(t) for t in tasks],
        )

    # -- Habits --

    @command
    async def create_habit(self, args: Args) -> ToolResult:
        name = require_string(args, "name", "Habit name")
        frequency = args["frequency"] if is_valid_frequency(args.get("frequency")) else "daily"
        fields: dict[str, Any] = {
            "name": name,
            "frequency": frequency,
            "category": sanitize(args.get("category")) or "general",
        }
        tags = parse_tags(args.get("tags"))
        if tags:
            fields["tags"] = tags
        served = await self._chain.create("habits", fields)
        return ToolResult(
            True, f'Habit created: "{name}" ({frequency}) - {_via(served)}',
            habit_view(served.value),
        )

    @command
    async def toggle_habit(self, args: Args) -> ToolResult:
        id = require_string(args, "id", "Habit ID")
        day = _date_arg(args)
        served = await self._chain.toggle("habits", id, day)
        habit = served.value
        completions = habit.get("completions")
        if isinstance(completions, dict):
            completed = completions.get(day) is True
            streak = calculate_streak(completions)
        else:
            completed = bool(habit.get("completed"))
            streak = habit.get("streak", 0)
        message = (
            f"Habit completed for {day} (streak: {streak})" if completed
            else f"Habit uncompleted for {day}"
        )
        return ToolResult(
            True, f"{message} - {_via(served)}",
            {"id": id, "date": day, "completed": completed, "streak": streak},
        )

    @command
    async def get_today_habits(self, args: Args) -> ToolResult:
        day = today()
        habits = [habit_view(h, day) for h in await self._list("habits")]
        completed = sum(1 for h in habits if h["completedToday"])
        return ToolResult(
            True, f"{completed}/{len(habits)} habits completed today",
            {"habits": habits, "completed": completed, "total": len(habits)},
        )

    @command
    async def get_habit_streaks(self, args: Args) -> ToolResult:
        limit = int_arg(args, "limit")
        habits = [habit_view(h) for h in await self._list("habits")]
        habits.sort(key=lambda h: h["streak"], reverse=True)
        if limit:
            habits = habits[:limit]
        return ToolResult(
            True, f"Found {len(habits)} habits",
            [{k: h[k] for k in ("id", "name", "streak", "category")} for h in habits],
        )

    # -- Journal --

    @command
    async def write_journal(self, args: Args) -> ToolResult:
        content = require_string(args, "content", "Journal content")
        day = _date_arg(args)
        fields = {
            "date": day,
            "content": content,
            "mood": args["mood"] if is_valid_mood(args.get("mood")) else 3,
            "energy": args["energy"] if is_valid_energy(args.get("energy")) else 3,
            "tags": parse_tags(args.get("tags")),
        }
        served = await self._chain.create("journal", fields)
        verb = "updated" if served.value.get("created") is False else "saved"
        return ToolResult(
            True, f"Journal entry {verb} for {day} - {_via(served)}",
            journal_view(served.value),
        )

    @command
    async def get_journal_entry(self, args: Args) -> ToolResult:
        day = _date_arg(args)
        entry = next((e for e in await self._list("journal") if e.get("date") == day), None)
        if entry is None:
            return ToolResult(True, f"No journal entry for {day}")
        return ToolResult(True, f"Found journal entry for {day}", entry)

    @command
    async def get_recent_journal(self, args: Args) -> ToolResult:
        days = int_arg(args, "days", 7)
        cutoff = _since(days)
        entries = [e for e in await self._list("journal") if (e.get("date") or "") >= cutoff]
        entries.sort(key=lambda e: e.get("date") or "", reverse=True)
        return ToolResult(
            True, f"Found {len(entries)} journal entries from last {days} days", entries,
        )

    @command
    async def get_mood_trend(self, args: Args) -> ToolResult:
        days = int_arg(args, "days", 7)
        cutoff = _since(days)
        entries = [e for e in await self._list("journal") if (e.get("date") or "") >= cutoff]
        entries.sort(key=lambda e: e.get("date") or "")

        def average(key: str) -> float:
            values = [e.get(key) or 0 for e in entries]
            return round(sum(values) / len(values), 1) if values else 0

        return ToolResult(True, f"Mood/energy trend for last {days} days", {
            "trend": [
                {"date": e.get("date"), "mood": e.get("mood"), "energy": e.get("energy")}
                for e in entries
            ],
            "averageMood": average("mood"),
            "averageEnergy": average("energy"),
            "entriesCount": len(entries),
        })

    # -- Bookmarks --

    @command
    async def create_bookmark(self, args: Args) -> ToolResult:
        url = sanitize(args.get("url"))
        if not is_valid_url(url):
            raise ValidationError("Valid URL is required")
        for existing in await self._list("bookmarks"):
            if existing.get("url") == url:
                raise ConflictError(
                    f'Bookmark already exists: "{existing.get("title")}"',
                    existing_id=existing.get("id"),
                )

        domain = extract_domain(url)
        title = sanitize(args.get("title")) or domain
        fields: dict[str, Any] = {
            "url": url,
            "title": title,
            "domain": domain,
            "collection": sanitize(args.get("collection")) or "Unsorted",
            "tags": parse_tags(args.get("tags")),
        }
        description = sanitize(args.get("description"))
        if description:
            fields["description"] = description
        linked_task = sanitize(args.get("linkedTaskId"))
        if linked_task:
            fields["linkedTaskId"] = linked_task
        served = await self._chain.create("bookmarks", fields)
        return ToolResult(
            True, f'Bookmark saved: "{title}" - {_via(served)}', bookmark_view(served.value),
        )

    @command
    async def update_bookmark(self, args: Args) -> ToolResult:
        id = require_string(args, "id", "Bookmark ID")
        changes: dict[str, Any] = {}
        for key in ("title", "description", "collection"):
            if key in args:
                changes[key] = sanitize(args.get(key))
        if "tags" in args:
            changes["tags"] = parse_tags(args.get("tags"))
        if "isRead" in args:
            changes["isRead"] = args.get("isRead") is True
        if not changes:
            raise ValidationError("No changes provided")
        served = await self._chain.update("bookmarks", id, changes)
        return ToolResult(True, f"Bookmark updated - {_via(served)}", {"id": id, "updates": changes})

    @command
    async def delete_bookmark(self, args: Args) -> ToolResult:
        id = require_string(args, "id", "Bookmark ID")
        served = await self._chain.delete("bookmarks", id)
        return ToolResult(
            True, f"Bookmark deleted - {_via(served)}",
            {"id": id, "title": served.value.get("title")},
        )

    @command
    async def search_bookmarks(self, args: Args) -> ToolResult:
        query = require_string(args, "query", "Search query").lower()
        collection = sanitize(args.get("collection"))
        limit = int_arg(args, "limit", 20)

        def matches(b: dict) -> bool:
            return (
                query in (b.get("title") or "").lower()
                or query in (b.get("url") or "").lower()
                or query in (b.get("description") or "").lower()
                or any(query in t.lower() for t in b.get("tags") or [])
            )

        results = [b for b in await self._list("bookmarks") if matches(b)]
        if collection:
            results = [b for b in results if b.get("collection") == collection]
        results = results[:limit]
        return ToolResult(
            True, f'Found {len(results)} bookmarks matching "{query}"',
            [bookmark_view(b) for b in results],
        )

    @command
    async def list_bookmarks(self, args: Args) -> ToolResult:
        collection = sanitize(args.get("collection"))
        tag = sanitize(args.get("tag"))
        limit = int_arg(args, "limit", 50)

        everything = await self._list("bookmarks")
        bookmarks = everything
        if collection:
            bookmarks = [b for b in bookmarks if b.get("collection") == collection]
        if tag:
            bookmarks = [b for b in bookmarks if tag in (b.get("tags") or [])]
        if args.get("unread") is True:
            bookmarks = [b for b in bookmarks if not b.get("isRead")]
        bookmarks = bookmarks[:limit]

        collections: dict[str, int] = {}
        for b in everything:
            name = b.get("collection") or "Unsorted"
            collections[name] = collections.get(name, 0) + 1

        return ToolResult(True, f"Found {len(bookmarks)} bookmarks", {
            "bookmarks": [bookmark_view(b) for b in bookmarks],
            "collections": collections,
        })

    # -- Ideas --

    @command
    async def create_idea(self, args: Args) -> ToolResult:
        title = require_string(args, "title", "Idea title")
        content = args["content"] if isinstance(args.get("content"), str) else ""
        if len(content) > MAX_IDEA_LENGTH:
            raise ValidationError(f"Idea content must be {MAX_IDEA_LENGTH} characters or less")
        color = args.get("color")
        if color not in IDEA_COLORS:
            color = "yellow"
        served = await self._chain.create(
            "ideas", {"title": title, "content": content, "color": color},
        )
        return ToolResult(True, f'Idea captured: "{title}" - {_via(served)}', idea_view(served.value))

    # -- Summaries --

    @command
    async def get_daily_summary(self, args: Args) -> ToolResult:
        summary = daily_summary(self._store.get())
        return ToolResult(True, f"Daily summary for {summary['date']}", summary)

    @command
    async def get_weekly_summary(self, args: Args) -> ToolResult:
        weeks_back = max(0, int_arg(args, "weeksBack", 0))
        summary = weekly_summary(self._store.get(), weeks_back)
        return ToolResult(
            True, f"Weekly summary: {summary['weekStart']} to {summary['weekEnd']}", summary,
        )

    @command
    async def get_productivity_stats(self, args: Args) -> ToolResult:
        return ToolResult(True, "Overall productivity statistics", productivity_stats(self._store.get()))

    # -- Sync --

    @command
    async def gist_configure(self, args: Args) -> ToolResult:
        changes: dict[str, Any] = {}
        names: list[str] = []
        token = sanitize(args.get("token"))
        if token:
            changes["token"] = token
            names.append("token")
        gist_id = sanitize(args.get("gistId"))
        if gist_id:
            changes["gist_id"] = gist_id
            names.append("gistId")
        if isinstance(args.get("autoSync"), bool):
            changes["auto_sync"] = args["autoSync"]
            names.append("autoSync")
        interval = int_arg(args, "syncInterval")
        if interval is not None:
            changes["sync_interval"] = max(MIN_SYNC_INTERVAL, interval)
            names.append("syncInterval")
        if not changes:
            raise ValidationError("No valid configuration provided")

        self._sync_config.update(**changes)
        self._scheduler.reconfigure(changes)
        return ToolResult(True, "Sync settings updated", {
            "configured": names,
            "status": self._reconciler.status(),
        })

    @command
    async def gist_status(self, args: Args) -> ToolResult:
        status = self._reconciler.status()
        status["autoSyncRunning"] = self._scheduler.running
        status["localItems"] = self._store.get().count_items().to_dict()
        message = "Gist sync is configured" if status["configured"] else "Gist sync is not configured"
        return ToolResult(True, message, status)

    @command
    async def gist_validate(self, args: Args) -> ToolResult:
        if not self._sync_config.config.token:
            return ToolResult(
                False, "GitHub token not configured",
                {"tokenValid": False, "gistAccessible": False},
            )
        try:
            result = await self._reconciler.validate()
        except AuthError as e:
            return ToolResult(False, str(e), {"tokenValid": False, "gistAccessible": False})

        if not self._sync_config.config.gist_id:
            message = f"Token valid for {result['username']}, but no Gist ID configured"
        elif result["gistAccessible"]:
            message = f"Token valid for {result['username']}, Gist accessible"
        else:
            message = "Token valid, but Gist not accessible"
        return ToolResult(True, message, result)

    @command
    async def gist_create(self, args: Args) -> ToolResult:
        outcome = await self._reconciler.create_remote(
            description=sanitize(args.get("description")) or "Bytepad Data",
            public=args.get("public") is True,
        )
        return _sync_result(outcome)

    @command
    async def gist_pull(self, args: Args) -> ToolResult:
        return _sync_result(await self._reconciler.pull(force=args.get("force") is True))

    @command
    async def gist_push(self, args: Args) -> ToolResult:
        outcome = await self._reconciler.push(
            force=args.get("force") is True,
            create_if_missing=args.get("createIfMissing") is True,
        )
        return _sync_result(outcome)

    @command
    async def gist_sync(self, args: Args) -> ToolResult:
        return _sync_result(await self._reconciler.smart_sync())

    @command
    async def gist_export(self, args: Args) -> ToolResult:
        fmt = "minimal" if args.get("format") == "minimal" else "full"
        document = self._store.get()
        count = document.count_items()
        payload = document.to_dict() if fmt == "full" else document.data
        return ToolResult(True, f"Exported {count.total} items", {
            "format": fmt,
            "itemCount": count.to_dict(),
            "exportedAt": utc_now(),
            "data": payload,
        })

    # -- App --

    @command
    async def app_status(self, args: Args) -> ToolResult:
        health = await self._local.health()
        if health is not None:
            version = health.get("version", "unknown")
            return ToolResult(
                True,
                f"Desktop app is running (v{version}). All changes sync to Gist automatically.",
                {"appRunning": True, "version": version, "syncMode": "automatic"},
            )
        return ToolResult(
            True,
            "Desktop app is not running. Changes are stored locally in the file store.",
            {"appRunning": False, "syncMode": "file-store"},
        )
