"""
MCP stdio server for bytepad: notes, tasks, habits, journal and sync tools.

Usage:
    bytepad mcp                                # stdio server (via CLI)
    claude --mcp-server bytepad="bytepad mcp"  # agent integration

Every tool forwards to Bytepad.execute() and returns the JSON result
``{"success", "message", "data"?}``. Identical creation calls are
deduplicated by the command gateway; there is no global tool lock.
"""

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Any, AsyncIterator, Literal, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from .api import Bytepad
from .config import ENV_DATA_DIR, ENV_DATA_DIR_LEGACY

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

_app: Optional[Bytepad] = None
_init_lock = asyncio.Lock()


async def _get_app() -> Bytepad:
    """Lazy-init and start Bytepad (respects BYTEPAD_DATA_DIR)."""
    global _app
    async with _init_lock:
        if _app is None:
            data_dir = os.environ.get(ENV_DATA_DIR) or os.environ.get(ENV_DATA_DIR_LEGACY)
            app = Bytepad(Path(data_dir) if data_dir else None)
            await app.start()
            _app = app
    return _app


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    global _app
    try:
        yield
    finally:
        if _app is not None:
            await _app.aclose()
            _app = None


mcp = FastMCP(
    "bytepad",
    instructions=(
        "Personal productivity data: notes, tasks, habits, journal, bookmarks and ideas. "
        "Changes go to the Bytepad desktop app when it is running, otherwise to a local "
        "file store that can be synced with a GitHub Gist."
    ),
    lifespan=_lifespan,
)


async def _call(name: str, **args: Any) -> str:
    """Run a command, dropping unset arguments, and return its JSON result."""
    app = await _get_app()
    result = await app.execute(name, {k: v for k, v in args.items() if v is not None})
    return json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Tool annotations
# ---------------------------------------------------------------------------

_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)
_CREATE = ToolAnnotations(idempotentHint=True, destructiveHint=False)
_UPDATE = ToolAnnotations(idempotentHint=False, destructiveHint=False)
_DESTRUCTIVE = ToolAnnotations(destructiveHint=True, idempotentHint=False)

Id = Annotated[str, Field(description="Item ID.")]
Tags = Annotated[Optional[list[str]], Field(description="Tags for organization.")]
Priority = Literal["P1", "P2", "P3", "P4"]
Day = Annotated[Optional[str], Field(description="Date as YYYY-MM-DD. Defaults to today.")]
Limit = Annotated[Optional[int], Field(description="Maximum number of results.")]


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


@mcp.tool(description="Create a new markdown note with optional tags.", annotations=_CREATE)
async def create_note(
    title: Annotated[str, Field(description="Note title.")],
    content: Annotated[Optional[str], Field(description="Note content in markdown.")] = None,
    tags: Tags = None,
    pinned: Annotated[Optional[bool], Field(description="Pin the note to the top.")] = None,
) -> str:
    return await _call("create_note", title=title, content=content, tags=tags, pinned=pinned)


@mcp.tool(description="Update an existing note.", annotations=_UPDATE)
async def update_note(
    id: Id,
    title: Annotated[Optional[str], Field(description="New title.")] = None,
    content: Annotated[Optional[str], Field(description="New content.")] = None,
    tags: Tags = None,
    pinned: Annotated[Optional[bool], Field(description="Pin or unpin.")] = None,
) -> str:
    return await _call("update_note", id=id, title=title, content=content, tags=tags, pinned=pinned)


@mcp.tool(description="Delete a note permanently.", annotations=_DESTRUCTIVE)
async def delete_note(id: Id) -> str:
    return await _call("delete_note", id=id)


@mcp.tool(description="Get a note by ID, with its full content.", annotations=_READ_ONLY)
async def get_note(id: Id) -> str:
    return await _call("get_note", id=id)


@mcp.tool(description="Search notes by title, content, or tags.", annotations=_READ_ONLY)
async def search_notes(
    query: Annotated[str, Field(description="Case-insensitive search text.")],
    limit: Annotated[Optional[int], Field(description="Maximum results (default 10).")] = None,
) -> str:
    return await _call("search_notes", query=query, limit=limit)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Create a task with optional priority, deadline, and tags. "
        "P1=critical, P2=high, P3=medium (default), P4=low."
    ),
    annotations=_CREATE,
)
async def create_task(
    title: Annotated[str, Field(description="Task title.")],
    description: Annotated[Optional[str], Field(description="Task description.")] = None,
    priority: Optional[Priority] = None,
    deadline: Annotated[Optional[str], Field(description="Due date (YYYY-MM-DD or ISO).")] = None,
    tags: Tags = None,
) -> str:
    return await _call(
        "create_task", title=title, description=description,
        priority=priority, deadline=deadline, tags=tags,
    )


@mcp.tool(description="Update an existing task.", annotations=_UPDATE)
async def update_task(
    id: Id,
    title: Annotated[Optional[str], Field(description="New title.")] = None,
    description: Annotated[Optional[str], Field(description="New description.")] = None,
    priority: Optional[Priority] = None,
    deadline: Annotated[Optional[str], Field(description="New deadline.")] = None,
    tags: Tags = None,
) -> str:
    return await _call(
        "update_task", id=id, title=title, description=description,
        priority=priority, deadline=deadline, tags=tags,
    )


@mcp.tool(
    description="Mark a task complete or incomplete. Completing also completes its subtasks.",
    annotations=_UPDATE,
)
async def toggle_task(id: Id) -> str:
    return await _call("toggle_task", id=id)


@mcp.tool(description="Delete a task permanently.", annotations=_DESTRUCTIVE)
async def delete_task(id: Id) -> str:
    return await _call("delete_task", id=id)


@mcp.tool(description="List tasks sorted by priority.", annotations=_READ_ONLY)
async def get_tasks(
    filter: Annotated[
        Optional[Literal["all", "active", "completed"]],
        Field(description="Filter by status (default all)."),
    ] = None,
    limit: Limit = None,
) -> str:
    return await _call("get_tasks", filter=filter, limit=limit)


@mcp.tool(description="List tasks with one priority level.", annotations=_READ_ONLY)
async def get_tasks_by_priority(
    priority: Priority,
    includeCompleted: Annotated[
        Optional[bool], Field(description="Include completed tasks (default false)."),
    ] = None,
) -> str:
    return await _call(
        "get_tasks_by_priority", priority=priority, includeCompleted=includeCompleted,
    )


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------


@mcp.tool(description="Create a habit to track.", annotations=_CREATE)
async def create_habit(
    name: Annotated[str, Field(description="Habit name.")],
    frequency: Optional[Literal["daily", "weekly"]] = None,
    category: Annotated[Optional[str], Field(description="Category (default general).")] = None,
    tags: Tags = None,
) -> str:
    return await _call("create_habit", name=name, frequency=frequency, category=category, tags=tags)


@mcp.tool(
    description="Mark a habit done or not done for a day, and recompute its streak.",
    annotations=_UPDATE,
)
async def toggle_habit(id: Id, date: Day = None) -> str:
    return await _call("toggle_habit", id=id, date=date)


@mcp.tool(description="All habits with today's completion status.", annotations=_READ_ONLY)
async def get_today_habits() -> str:
    return await _call("get_today_habits")


@mcp.tool(description="Habits sorted by current streak, longest first.", annotations=_READ_ONLY)
async def get_habit_streaks(limit: Limit = None) -> str:
    return await _call("get_habit_streaks", limit=limit)


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------


@mcp.tool(
    description="Write the journal entry for a day, replacing any existing entry for that date.",
    annotations=_CREATE,
)
async def write_journal(
    content: Annotated[str, Field(description="Journal text.")],
    date: Day = None,
    mood: Annotated[Optional[int], Field(ge=1, le=5, description="Mood 1-5 (default 3).")] = None,
    energy: Annotated[Optional[int], Field(ge=1, le=5, description="Energy 1-5 (default 3).")] = None,
    tags: Tags = None,
) -> str:
    return await _call(
        "write_journal", content=content, date=date, mood=mood, energy=energy, tags=tags,
    )


@mcp.tool(description="Get the journal entry for a day.", annotations=_READ_ONLY)
async def get_journal_entry(date: Day = None) -> str:
    return await _call("get_journal_entry", date=date)


@mcp.tool(description="Journal entries from the last N days, newest first.", annotations=_READ_ONLY)
async def get_recent_journal(
    days: Annotated[Optional[int], Field(description="Days to look back (default 7).")] = None,
) -> str:
    return await _call("get_recent_journal", days=days)


@mcp.tool(description="Mood and energy trend for the last N days.", annotations=_READ_ONLY)
async def get_mood_trend(
    days: Annotated[Optional[int], Field(description="Days to look back (default 7).")] = None,
) -> str:
    return await _call("get_mood_trend", days=days)


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------


@mcp.tool(
    description="Save a URL as a bookmark. Fails if the URL is already bookmarked.",
    annotations=_CREATE,
)
async def create_bookmark(
    url: Annotated[str, Field(description="URL to bookmark.")],
    title: Annotated[Optional[str], Field(description="Title (defaults to the domain).")] = None,
    description: Annotated[Optional[str], Field(description="Description.")] = None,
    collection: Annotated[Optional[str], Field(description="Collection (default Unsorted).")] = None,
    tags: Tags = None,
    linkedTaskId: Annotated[Optional[str], Field(description="ID of a related task.")] = None,
) -> str:
    return await _call(
        "create_bookmark", url=url, title=title, description=description,
        collection=collection, tags=tags, linkedTaskId=linkedTaskId,
    )


@mcp.tool(description="Update bookmark metadata.", annotations=_UPDATE)
async def update_bookmark(
    id: Id,
    title: Annotated[Optional[str], Field(description="New title.")] = None,
    description: Annotated[Optional[str], Field(description="New description.")] = None,
    collection: Annotated[Optional[str], Field(description="New collection.")] = None,
    tags: Tags = None,
    isRead: Annotated[Optional[bool], Field(description="Mark read or unread.")] = None,
) -> str:
    return await _call(
        "update_bookmark", id=id, title=title, description=description,
        collection=collection, tags=tags, isRead=isRead,
    )


@mcp.tool(description="Delete a bookmark.", annotations=_DESTRUCTIVE)
async def delete_bookmark(id: Id) -> str:
    return await _call("delete_bookmark", id=id)


@mcp.tool(description="Search bookmarks by title, URL, description, or tags.", annotations=_READ_ONLY)
async def search_bookmarks(
    query: Annotated[str, Field(description="Case-insensitive search text.")],
    collection: Annotated[Optional[str], Field(description="Only this collection.")] = None,
    limit: Annotated[Optional[int], Field(description="Maximum results (default 20).")] = None,
) -> str:
    return await _call("search_bookmarks", query=query, collection=collection, limit=limit)


@mcp.tool(description="List bookmarks, with per-collection counts.", annotations=_READ_ONLY)
async def list_bookmarks(
    collection: Annotated[Optional[str], Field(description="Only this collection.")] = None,
    tag: Annotated[Optional[str], Field(description="Only bookmarks with this tag.")] = None,
    unread: Annotated[Optional[bool], Field(description="Only unread bookmarks.")] = None,
    limit: Annotated[Optional[int], Field(description="Maximum results (default 50).")] = None,
) -> str:
    return await _call("list_bookmarks", collection=collection, tag=tag, unread=unread, limit=limit)


# ---------------------------------------------------------------------------
# Ideas
# ---------------------------------------------------------------------------


@mcp.tool(description="Capture a quick idea (content up to 280 characters).", annotations=_CREATE)
async def create_idea(
    title: Annotated[str, Field(description="Idea title.")],
    content: Annotated[Optional[str], Field(description="Idea text, at most 280 characters.")] = None,
    color: Optional[Literal["yellow", "green", "blue", "purple", "orange", "red", "cyan"]] = None,
) -> str:
    return await _call("create_idea", title=title, content=content, color=color)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


@mcp.tool(description="Summary of today's tasks, habits, journal and focus time.", annotations=_READ_ONLY)
async def get_daily_summary() -> str:
    return await _call("get_daily_summary")


@mcp.tool(description="Weekly productivity summary (weeks start on Monday).", annotations=_READ_ONLY)
async def get_weekly_summary(
    weeksBack: Annotated[Optional[int], Field(description="0 = current week (default).")] = None,
) -> str:
    return await _call("get_weekly_summary", weeksBack=weeksBack)


@mcp.tool(description="Overall productivity statistics.", annotations=_READ_ONLY)
async def get_productivity_stats() -> str:
    return await _call("get_productivity_stats")


# ---------------------------------------------------------------------------
# Gist sync
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Configure Gist sync. The token is kept in memory only and never written to disk."
    ),
    annotations=_UPDATE,
)
async def gist_configure(
    token: Annotated[Optional[str], Field(description="GitHub token with gist scope.")] = None,
    gistId: Annotated[Optional[str], Field(description="Existing Gist ID.")] = None,
    autoSync: Annotated[Optional[bool], Field(description="Enable automatic sync.")] = None,
    syncInterval: Annotated[Optional[int], Field(description="Minutes between syncs (min 1).")] = None,
) -> str:
    return await _call(
        "gist_configure", token=token, gistId=gistId, autoSync=autoSync, syncInterval=syncInterval,
    )


@mcp.tool(description="Current sync configuration and local item counts.", annotations=_READ_ONLY)
async def gist_status() -> str:
    return await _call("gist_status")


@mcp.tool(description="Check the GitHub token and Gist access.", annotations=_READ_ONLY)
async def gist_validate() -> str:
    return await _call("gist_validate")


@mcp.tool(description="Create a new Gist holding the local data.", annotations=_UPDATE)
async def gist_create(
    description: Annotated[Optional[str], Field(description='Gist description (default "Bytepad Data").')] = None,
    public: Annotated[Optional[bool], Field(description="Make the Gist public (default false).")] = None,
) -> str:
    return await _call("gist_create", description=description, public=public)


@mcp.tool(
    description=(
        "Replace local data with the Gist's. Refuses if the Gist has far fewer items, "
        "unless force is set."
    ),
    annotations=_DESTRUCTIVE,
)
async def gist_pull(
    force: Annotated[Optional[bool], Field(description="Override the data-loss check.")] = None,
) -> str:
    return await _call("gist_pull", force=force)


@mcp.tool(
    description=(
        "Replace the Gist's data with local data. Refuses if local has far fewer items, "
        "unless force is set."
    ),
    annotations=_DESTRUCTIVE,
)
async def gist_push(
    force: Annotated[Optional[bool], Field(description="Override the data-loss check.")] = None,
    createIfMissing: Annotated[
        Optional[bool], Field(description="Create a Gist if none is configured."),
    ] = None,
) -> str:
    return await _call("gist_push", force=force, createIfMissing=createIfMissing)


@mcp.tool(
    description="Pull if the Gist is newer, push if local is newer, otherwise do nothing.",
    annotations=_UPDATE,
)
async def gist_sync() -> str:
    return await _call("gist_sync")


@mcp.tool(description="Export all local data as JSON without syncing.", annotations=_READ_ONLY)
async def gist_export(
    format: Annotated[
        Optional[Literal["full", "minimal"]],
        Field(description="full = with metadata (default), minimal = data only."),
    ] = None,
) -> str:
    return await _call("gist_export", format=format)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


@mcp.tool(description="Check whether the Bytepad desktop app is running.", annotations=_READ_ONLY)
async def app_status() -> str:
    return await _call("app_status")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the MCP stdio server."""
    import signal
    # anyio's stdin reader shields the blocking readline from cancellation,
    # so the first Ctrl+C would be swallowed without this handler.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
