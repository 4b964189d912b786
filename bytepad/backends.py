"""
Mutation backends and the ordered chain that picks one per call.

Two implementations of MutationBackend:
- LocalAppBackend: the desktop app's local API (authoritative when running)
- FileStoreBackend: the private file store (always available)

A backend method returns None when the backend cannot serve the call,
which tells BackendChain to try the next one. Domain failures (missing
entity, duplicate bookmark) are raised, not returned as None.
"""

import logging
from datetime import date, timedelta
from typing import Any, NamedTuple, Optional, Protocol, runtime_checkable

from .errors import ConflictError, NotFoundError, ValidationError
from .file_store import FileStore
from .local_api import LocalApiClient
from .types import StoreData, generate_id, today, utc_now

logger = logging.getLogger(__name__)

# Collections reachable through the command surface
MUTABLE_COLLECTIONS = ("notes", "tasks", "habits", "journal", "bookmarks", "ideas")

# Collections where new items go to the front
_PREPEND = ("notes", "tasks", "journal", "bookmarks")

# Longest streak walk, in days
_MAX_STREAK_DAYS = 365


@runtime_checkable
class MutationBackend(Protocol):
    """Storage that can serve entity commands."""

    name: str

    async def create(self, collection: str, fields: dict[str, Any]) -> Optional[dict]: ...

    async def update(
        self, collection: str, id: str, changes: dict[str, Any],
    ) -> Optional[dict]: ...

    async def delete(self, collection: str, id: str) -> Optional[dict]: ...

    async def toggle(
        self, collection: str, id: str, on_date: Optional[str] = None,
    ) -> Optional[dict]: ...

    async def list(self, collection: str) -> Optional[list[dict]]: ...


def calculate_streak(completions: dict[str, bool], as_of: Optional[str] = None) -> int:
    """
    Consecutive completed days ending today.

    If today is not done yet the count starts from yesterday, so an
    unfinished day does not break the streak.
    """
    day = date.fromisoformat(as_of or today())
    streak = 0
    for i in range(_MAX_STREAK_DAYS):
        if completions.get(day.isoformat()):
            streak += 1
        elif i > 0:
            break
        day -= timedelta(days=1)
    return streak


class LocalAppBackend:
    """Sends entity commands to the desktop app."""

    name = "local"

    def __init__(self, client: LocalApiClient):
        self._client = client

    @staticmethod
    def _merge(base: dict, data: Any) -> dict:
        # The app may answer with the full item or just {id, message}
        if isinstance(data, dict):
            return {**base, **data}
        return dict(base)

    async def create(self, collection: str, fields: dict[str, Any]) -> Optional[dict]:
        result = await self._client.try_local("POST", f"/api/{collection}", fields)
        if not result.ok:
            return None
        return self._merge(fields, result.data)

    async def update(self, collection: str, id: str, changes: dict[str, Any]) -> Optional[dict]:
        result = await self._client.try_local("PATCH", f"/api/{collection}/{id}", changes)
        if not result.ok:
            return None
        return self._merge({"id": id, **changes}, result.data)

    async def delete(self, collection: str, id: str) -> Optional[dict]:
        result = await self._client.try_local("DELETE", f"/api/{collection}/{id}")
        if not result.ok:
            return None
        return self._merge({"id": id}, result.data)

    async def toggle(
        self, collection: str, id: str, on_date: Optional[str] = None,
    ) -> Optional[dict]:
        payload = {"date": on_date} if on_date else None
        result = await self._client.try_local("POST", f"/api/{collection}/{id}/toggle", payload)
        if not result.ok:
            return None
        return self._merge({"id": id}, result.data)

    async def list(self, collection: str) -> Optional[list[dict]]:
        result = await self._client.try_local("GET", f"/api/{collection}")
        if not result.ok:
            return None
        if not isinstance(result.data, list):
            logger.warning("Local API returned a non-list for %s, falling back", collection)
            return None
        return [item for item in result.data if isinstance(item, dict)]


class FileStoreBackend:
    """Applies entity commands to the file store. Always serves."""

    name = "file"

    def __init__(self, store: FileStore):
        self._store = store

    # -- helpers --

    @staticmethod
    def _find(document: StoreData, collection: str, id: str) -> dict:
        for item in document.data[collection]:
            if item.get("id") == id:
                return item
        raise NotFoundError(f"{_singular(collection)} not found: {id}")

    @staticmethod
    def _new_item(collection: str, fields: dict[str, Any]) -> dict:
        now = utc_now()
        item: dict[str, Any] = {"id": generate_id()}
        if collection == "notes":
            item.update(
                title=fields["title"], content=fields.get("content", ""),
                tags=fields.get("tags", []), pinned=fields.get("pinned", False),
                createdAt=now, updatedAt=now,
            )
        elif collection == "tasks":
            item.update(
                title=fields["title"], description=fields.get("description"),
                priority=fields.get("priority", "P3"), deadline=fields.get("deadline"),
                completed=False, subtasks=[], createdAt=now,
                tags=fields.get("tags") or None,
            )
        elif collection == "habits":
            item.update(
                name=fields["name"], frequency=fields.get("frequency", "daily"),
                category=fields.get("category", "general"),
                tags=fields.get("tags") or None,
                completions={}, streak=0, createdAt=now,
            )
        elif collection == "journal":
            item.update(
                date=fields["date"], content=fields["content"],
                mood=fields.get("mood", 3), energy=fields.get("energy", 3),
                tags=fields.get("tags", []),
            )
        elif collection == "bookmarks":
            item.update(
                url=fields["url"], title=fields["title"],
                description=fields.get("description"), domain=fields["domain"],
                collection=fields.get("collection", "Unsorted"),
                tags=fields.get("tags", []), isRead=False, createdAt=now,
                linkedTaskId=fields.get("linkedTaskId"),
            )
        elif collection == "ideas":
            item.update(
                title=fields["title"], content=fields.get("content", ""),
                color=fields.get("color", "yellow"), tags=fields.get("tags", []),
                linkedNoteIds=[], linkedTaskIds=[], status="active",
                createdAt=now, updatedAt=now,
            )
        else:
            raise ValidationError(f"Unknown collection: {collection}")
        return item

    # -- MutationBackend --

    async def create(self, collection: str, fields: dict[str, Any]) -> dict:
        def mutate(document: StoreData) -> dict:
            items = document.data[collection]
            stats = document.data["gamification"]

            if collection == "journal":
                for entry in items:
                    if entry.get("date") == fields["date"]:
                        entry.update(
                            content=fields["content"],
                            mood=fields.get("mood", 3),
                            energy=fields.get("energy", 3),
                            tags=fields.get("tags", []),
                        )
                        return dict(entry, created=False)

            if collection == "bookmarks":
                for bookmark in items:
                    if bookmark.get("url") == fields["url"]:
                        raise ConflictError(
                            f"Bookmark already exists: \"{bookmark.get('title')}\"",
                            existing_id=bookmark["id"],
                        )

            item = self._new_item(collection, fields)
            if collection == "ideas":
                item["order"] = len(items)
            if collection in _PREPEND:
                items.insert(0, item)
            else:
                items.append(item)

            if collection == "notes":
                stats["notesCreated"] = stats.get("notesCreated", 0) + 1
            elif collection == "journal":
                stats["journalEntries"] = stats.get("journalEntries", 0) + 1
                return dict(item, created=True)
            return dict(item)

        return self._store.update(mutate)

    async def update(self, collection: str, id: str, changes: dict[str, Any]) -> dict:
        def mutate(document: StoreData) -> dict:
            item = self._find(document, collection, id)
            item.update(changes)
            if "updatedAt" in item:
                item["updatedAt"] = utc_now()
            return dict(item)

        return self._store.update(mutate)

    async def delete(self, collection: str, id: str) -> dict:
        def mutate(document: StoreData) -> dict:
            item = self._find(document, collection, id)
            document.data[collection].remove(item)
            return dict(item)

        return self._store.update(mutate)

    async def toggle(self, collection: str, id: str, on_date: Optional[str] = None) -> dict:
        if collection == "tasks":
            return self._store.update(lambda document: self._toggle_task(document, id))
        if collection == "habits":
            day = on_date or today()
            return self._store.update(lambda document: self._toggle_habit(document, id, day))
        raise ValidationError(f"Cannot toggle {collection}")

    def _toggle_task(self, document: StoreData, id: str) -> dict:
        task = self._find(document, "tasks", id)
        was_completed = bool(task.get("completed"))
        task["completed"] = not was_completed
        if task["completed"]:
            task["completedAt"] = utc_now()
            for subtask in task.get("subtasks") or []:
                subtask["completed"] = True
            stats = document.data["gamification"]
            stats["tasksCompleted"] = stats.get("tasksCompleted", 0) + 1
            stats["tasksCompletedToday"] = stats.get("tasksCompletedToday", 0) + 1
        else:
            task.pop("completedAt", None)
        return dict(task)

    def _toggle_habit(self, document: StoreData, id: str, day: str) -> dict:
        habit = self._find(document, "habits", id)
        completions = habit.setdefault("completions", {})
        was_completed = completions.get(day) is True
        completions[day] = not was_completed
        habit["streak"] = calculate_streak(completions)
        if completions[day]:
            stats = document.data["gamification"]
            stats["habitsCompleted"] = stats.get("habitsCompleted", 0) + 1
            stats["habitsCompletedToday"] = stats.get("habitsCompletedToday", 0) + 1
        return dict(habit, date=day, completed=completions[day])

    async def list(self, collection: str) -> list[dict]:
        return list(self._store.get().data[collection])


def _singular(collection: str) -> str:
    return {
        "notes": "Note", "tasks": "Task", "habits": "Habit", "journal": "Journal entry",
        "bookmarks": "Bookmark", "ideas": "Idea",
    }.get(collection, collection)


class Served(NamedTuple):
    """A backend result and the name of the backend that produced it."""
    value: Any
    backend: str


class BackendChain:
    """Try backends in declared order; the first that serves wins."""

    def __init__(self, *backends: MutationBackend):
        if not backends:
            raise ValueError("BackendChain needs at least one backend")
        self._backends = backends

    @property
    def backends(self) -> tuple[MutationBackend, ...]:
        return self._backends

    async def _first(self, op: str, *args: Any) -> Served:
        for backend in self._backends:
            value = await getattr(backend, op)(*args)
            if value is not None:
                logger.debug("%s served by %s backend", op, backend.name)
                return Served(value, backend.name)
        raise RuntimeError(f"No backend could serve {op}")

    async def create(self, collection: str, fields: dict[str, Any]) -> Served:
        return await self._first("create", collection, fields)

    async def update(self, collection: str, id: str, changes: dict[str, Any]) -> Served:
        return await self._first("update", collection, id, changes)

    async def delete(self, collection: str, id: str) -> Served:
        return await self._first("delete", collection, id)

    async def toggle(self, collection: str, id: str, on_date: Optional[str] = None) -> Served:
        return await self._first("toggle", collection, id, on_date)

    async def list(self, collection: str) -> Served:
        return await self._first("list", collection)
