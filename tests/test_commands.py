"""
End-to-end tests for the command surface through Bytepad.execute().

The desktop app and the Gist API are in-memory fakes; everything else
(file store, gateway, backends, sync) is real.
"""

import asyncio
import json
from datetime import date, timedelta

import httpx
import pytest

from bytepad.api import Bytepad
from bytepad.errors import NotInitializedError
from bytepad.types import today

from conftest import FakeLocalApp


@pytest.fixture
def make_app(tmp_path, clock, gist_api, monkeypatch):
    monkeypatch.delenv("BYTEPAD_DATA_DIR", raising=False)
    monkeypatch.delenv("DATA_DIR", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))

    def factory(local_app):
        return Bytepad(
            tmp_path,
            env={},
            clock=clock,
            ops_log=False,
            local_transport=httpx.MockTransport(local_app.handler),
            gist_transport=httpx.MockTransport(gist_api.handler),
        )

    return factory


@pytest.fixture
def offline_app():
    return FakeLocalApp(running=False)


@pytest.fixture
def app(make_app, offline_app):
    """Bytepad with the desktop app not running."""
    return make_app(offline_app)


def stored(app, collection):
    return json.loads(app.store.path.read_text())["data"][collection]


class TestNotes:

    @pytest.mark.asyncio
    async def test_create_stored_locally(self, app):
        async with app:
            result = await app.execute("create_note", {"title": "Hello", "content": "Body", "tags": "a, b"})
        assert result.success
        assert result.message == 'Note created: "Hello" - stored locally'
        assert set(result.data) == {"id", "title", "tags", "pinned"}
        assert result.data["tags"] == ["a", "b"]
        assert stored(app, "notes")[0]["content"] == "Body"

    @pytest.mark.asyncio
    async def test_create_requires_title(self, app):
        async with app:
            result = await app.execute("create_note", {"title": "   "})
        assert not result.success
        assert result.message == "Note title is required"
        assert stored(app, "notes") == []

    @pytest.mark.asyncio
    async def test_update_get_delete(self, app):
        async with app:
            note = (await app.execute("create_note", {"title": "Draft"})).data

            empty = await app.execute("update_note", {"id": note["id"]})
            assert not empty.success
            assert empty.message == "No changes provided"

            updated = await app.execute("update_note", {"id": note["id"], "content": "Done"})
            assert updated.data == {"id": note["id"], "updates": {"content": "Done"}}

            fetched = await app.execute("get_note", {"id": note["id"]})
            assert fetched.data["content"] == "Done"

            deleted = await app.execute("delete_note", {"id": note["id"]})
            assert deleted.data == {"id": note["id"], "title": "Draft"}

            missing = await app.execute("get_note", {"id": note["id"]})
        assert not missing.success
        assert missing.message == f"Note not found: {note['id']}"

    @pytest.mark.asyncio
    async def test_search(self, app):
        async with app:
            await app.execute("create_note", {"title": "Groceries", "content": "milk"})
            await app.execute("create_note", {"title": "Work", "tags": ["Milkshake"]})
            await app.execute("create_note", {"title": "Other"})
            result = await app.execute("search_notes", {"query": "MILK"})
        assert {n["title"] for n in result.data} == {"Groceries", "Work"}
        assert "preview" in result.data[0]


class TestDeduplication:

    @pytest.mark.asyncio
    async def test_concurrent_identical_creates_store_once(self, app):
        async with app:
            args = {"title": "Ship it", "priority": "P1"}
            results = await asyncio.gather(*[app.execute("create_task", args) for _ in range(4)])
        assert len(stored(app, "tasks")) == 1
        assert len({r.data["id"] for r in results}) == 1

    @pytest.mark.asyncio
    async def test_retry_replays_cached_result(self, app, clock):
        async with app:
            first = await app.execute("create_idea", {"title": "Spark"})
            clock.advance(60)
            second = await app.execute("create_idea", {"title": "Spark"})
            clock.advance(300)
            third = await app.execute("create_idea", {"title": "Spark"})
        assert second == first
        assert third.data["id"] != first.data["id"]
        assert len(stored(app, "ideas")) == 2

    @pytest.mark.asyncio
    async def test_updates_are_not_deduplicated(self, app):
        async with app:
            task = (await app.execute("create_task", {"title": "Flip"})).data
            await app.execute("toggle_task", {"id": task["id"]})
            result = await app.execute("toggle_task", {"id": task["id"]})
        assert result.data["completed"] is False


class TestTasks:

    @pytest.mark.asyncio
    async def test_sorted_by_priority_with_filters(self, app):
        async with app:
            low = (await app.execute("create_task", {"title": "Low", "priority": "P4"})).data
            await app.execute("create_task", {"title": "Urgent", "priority": "P1"})
            await app.execute("create_task", {"title": "Default", "priority": "bogus"})
            await app.execute("toggle_task", {"id": low["id"]})

            everything = await app.execute("get_tasks", {})
            active = await app.execute("get_tasks", {"filter": "active"})
            done = await app.execute("get_tasks", {"filter": "completed"})
            bad = await app.execute("get_tasks", {"filter": "someday"})

        assert [t["title"] for t in everything.data] == ["Urgent", "Default", "Low"]
        assert everything.data[1]["priority"] == "P3"
        assert [t["title"] for t in active.data] == ["Urgent", "Default"]
        assert [t["title"] for t in done.data] == ["Low"]
        assert not bad.success

    @pytest.mark.asyncio
    async def test_by_priority(self, app):
        async with app:
            task = (await app.execute("create_task", {"title": "A", "priority": "P2"})).data
            await app.execute("create_task", {"title": "B", "priority": "P2"})
            await app.execute("toggle_task", {"id": task["id"]})
            open_only = await app.execute("get_tasks_by_priority", {"priority": "P2"})
            with_done = await app.execute(
                "get_tasks_by_priority", {"priority": "P2", "includeCompleted": True},
            )
            invalid = await app.execute("get_tasks_by_priority", {"priority": "P9"})
        assert [t["title"] for t in open_only.data] == ["B"]
        assert len(with_done.data) == 2
        assert not invalid.success

    @pytest.mark.asyncio
    async def test_toggle_message(self, app):
        async with app:
            task = (await app.execute("create_task", {"title": "X"})).data
            result = await app.execute("toggle_task", {"id": task["id"]})
        assert result.message == "Task completed - stored locally"
        assert stored(app, "tasks")[0]["completedAt"]


class TestHabits:

    @pytest.mark.asyncio
    async def test_toggle_and_streaks(self, app):
        yesterday = (date.fromisoformat(today()) - timedelta(days=1)).isoformat()
        async with app:
            habit = (await app.execute("create_habit", {"name": "Read", "frequency": "weekly"})).data
            assert habit["frequency"] == "weekly"
            await app.execute("toggle_habit", {"id": habit["id"], "date": yesterday})
            result = await app.execute("toggle_habit", {"id": habit["id"]})
            todays = await app.execute("get_today_habits", {})
            streaks = await app.execute("get_habit_streaks", {})
        assert result.data == {"id": habit["id"], "date": today(), "completed": True, "streak": 2}
        assert result.message.startswith(f"Habit completed for {today()} (streak: 2)")
        assert todays.data["completed"] == 1
        assert todays.data["total"] == 1
        assert streaks.data == [{"id": habit["id"], "name": "Read", "streak": 2, "category": "general"}]

    @pytest.mark.asyncio
    async def test_invalid_date(self, app):
        async with app:
            habit = (await app.execute("create_habit", {"name": "Run"})).data
            result = await app.execute("toggle_habit", {"id": habit["id"], "date": "June 5th"})
        assert not result.success
        assert "YYYY-MM-DD" in result.message


class TestJournal:

    @pytest.mark.asyncio
    async def test_write_then_replace(self, app):
        async with app:
            first = await app.execute("write_journal", {"content": "Morning", "mood": 2})
            second = await app.execute("write_journal", {"content": "Evening", "mood": 9})
            entry = await app.execute("get_journal_entry", {})
        assert first.message.startswith(f"Journal entry saved for {today()}")
        assert second.message.startswith(f"Journal entry updated for {today()}")
        assert second.data["mood"] == 3  # out of range falls back to the default
        assert entry.data["content"] == "Evening"
        assert len(stored(app, "journal")) == 1

    @pytest.mark.asyncio
    async def test_missing_entry_is_not_an_error(self, app):
        async with app:
            result = await app.execute("get_journal_entry", {"date": "2001-01-01"})
        assert result.success
        assert result.data is None

    @pytest.mark.asyncio
    async def test_recent_and_mood_trend(self, app):
        day = date.fromisoformat(today())
        async with app:
            for offset, mood in [(0, 4), (1, 2), (30, 5)]:
                await app.execute("write_journal", {
                    "content": f"day -{offset}", "mood": mood, "energy": 3,
                    "date": (day - timedelta(days=offset)).isoformat(),
                })
            recent = await app.execute("get_recent_journal", {"days": 7})
            trend = await app.execute("get_mood_trend", {})
        assert [e["content"] for e in recent.data] == ["day -0", "day -1"]
        assert trend.data["entriesCount"] == 2
        assert trend.data["averageMood"] == 3.0
        assert [t["mood"] for t in trend.data["trend"]] == [2, 4]


class TestBookmarks:

    @pytest.mark.asyncio
    async def test_create_defaults_and_conflict(self, app):
        async with app:
            first = await app.execute("create_bookmark", {"url": "https://www.example.com/page"})
            dup = await app.execute("create_bookmark", {"url": "https://www.example.com/page", "title": "Again"})
        assert first.data["title"] == "example.com"
        assert first.data["domain"] == "example.com"
        assert first.data["collection"] == "Unsorted"
        assert not dup.success
        assert dup.data == {"existingId": first.data["id"]}

    @pytest.mark.asyncio
    async def test_invalid_url(self, app):
        async with app:
            result = await app.execute("create_bookmark", {"url": "not a url"})
        assert not result.success
        assert result.message == "Valid URL is required"

    @pytest.mark.asyncio
    async def test_list_search_and_update(self, app):
        async with app:
            a = (await app.execute("create_bookmark", {
                "url": "https://docs.python.org", "title": "Python docs",
                "collection": "Dev", "tags": ["python"],
            })).data
            await app.execute("create_bookmark", {"url": "https://news.example.com", "title": "News"})
            await app.execute("update_bookmark", {"id": a["id"], "isRead": True})

            listed = await app.execute("list_bookmarks", {"unread": True})
            dev = await app.execute("list_bookmarks", {"collection": "Dev"})
            found = await app.execute("search_bookmarks", {"query": "python"})
        assert [b["title"] for b in listed.data["bookmarks"]] == ["News"]
        assert listed.data["collections"] == {"Unsorted": 1, "Dev": 1}
        assert [b["isRead"] for b in dev.data["bookmarks"]] == [True]
        assert [b["id"] for b in found.data] == [a["id"]]


class TestIdeas:

    @pytest.mark.asyncio
    async def test_length_limit_and_color(self, app):
        async with app:
            too_long = await app.execute("create_idea", {"title": "Long", "content": "x" * 281})
            idea = await app.execute("create_idea", {"title": "Short", "content": "x" * 280, "color": "plaid"})
        assert not too_long.success
        assert idea.success
        assert idea.data["color"] == "yellow"


class TestSummaries:

    @pytest.mark.asyncio
    async def test_daily_weekly_and_stats(self, app):
        async with app:
            task = (await app.execute("create_task", {"title": "Done", "priority": "P1"})).data
            await app.execute("toggle_task", {"id": task["id"]})
            await app.execute("create_task", {"title": "Open", "priority": "P2"})
            daily = await app.execute("get_daily_summary", {})
            weekly = await app.execute("get_weekly_summary", {})
            stats = await app.execute("get_productivity_stats", {})
        assert daily.data["tasks"]["completedToday"] == 1
        assert daily.data["tasks"]["highPriorityPending"] == 1
        assert weekly.data["tasks"]["completed"] == 1
        assert stats.data["taskCompletionRate"] == 50


class TestDesktopApp:

    @pytest.mark.asyncio
    async def test_mutations_go_to_running_app(self, make_app):
        local_app = FakeLocalApp()
        app = make_app(local_app)
        async with app:
            result = await app.execute("create_note", {"title": "Via app"})
        assert result.message == 'Note created: "Via app" - synced to app & Gist'
        assert result.data["id"] == "app1"
        assert stored(app, "notes") == []
        assert local_app.items["notes"][0]["title"] == "Via app"

    @pytest.mark.asyncio
    async def test_bookmark_conflict_checked_against_app(self, make_app):
        local_app = FakeLocalApp()
        app = make_app(local_app)
        async with app:
            await app.execute("create_bookmark", {"url": "https://example.com"})
            dup = await app.execute("create_bookmark", {"url": "https://example.com", "title": "x"})
        assert dup.data == {"existingId": "app1"}

    @pytest.mark.asyncio
    async def test_app_status(self, make_app, offline_app):
        running = make_app(FakeLocalApp())
        async with running:
            up = await running.execute("app_status")
        stopped = make_app(offline_app)
        async with stopped:
            down = await stopped.execute("app_status")
        assert up.data == {"appRunning": True, "version": "0.24.3", "syncMode": "automatic"}
        assert down.data == {"appRunning": False, "syncMode": "file-store"}


class TestSyncCommands:

    @pytest.mark.asyncio
    async def test_status_unconfigured(self, app):
        async with app:
            result = await app.execute("gist_status")
        assert result.message == "Gist sync is not configured"
        assert result.data["configured"] is False
        assert result.data["autoSyncRunning"] is False
        assert result.data["localItems"]["total"] == 0

    @pytest.mark.asyncio
    async def test_validate_without_token(self, app):
        async with app:
            result = await app.execute("gist_validate")
        assert not result.success
        assert result.data == {"tokenValid": False, "gistAccessible": False}

    @pytest.mark.asyncio
    async def test_configure_validate_push(self, app, gist_api):
        async with app:
            configured = await app.execute("gist_configure", {"token": "ghp_valid", "syncInterval": 0})
            valid = await app.execute("gist_validate")
            await app.execute("create_note", {"title": "Synced"})
            pushed = await app.execute("gist_push", {"createIfMissing": True})
            status = await app.execute("gist_status")
        assert configured.data["configured"] == ["token", "syncInterval"]
        assert configured.data["status"]["syncInterval"] == 1
        assert valid.message == "Token valid for octocat, but no Gist ID configured"
        assert pushed.data["action"] == "push"
        assert pushed.data["gistId"] == "gist1"
        assert gist_api.document("gist1").count_items().total == 1
        assert status.data["configured"] is True
        assert "ghp_valid" not in app.sync_config.path.read_text()

    @pytest.mark.asyncio
    async def test_configure_needs_something(self, app):
        async with app:
            result = await app.execute("gist_configure", {"syncInterval": "soon"})
        assert not result.success

    @pytest.mark.asyncio
    async def test_enabling_auto_sync_starts_timer(self, app, gist_api):
        gist_api.put_document("g1", None)
        async with app:
            await app.execute("gist_configure", {"token": "ghp_valid", "gistId": "g1", "autoSync": True})
            assert app.scheduler.running
            await app.execute("gist_configure", {"autoSync": False})
            assert not app.scheduler.running

    @pytest.mark.asyncio
    async def test_bad_token_reported(self, app):
        async with app:
            await app.execute("gist_configure", {"token": "ghp_wrong"})
            result = await app.execute("gist_validate")
        assert not result.success
        assert result.data["tokenValid"] is False

    @pytest.mark.asyncio
    async def test_pull_without_configuration(self, app):
        async with app:
            result = await app.execute("gist_pull")
        assert not result.success
        assert "not configured" in result.message

    @pytest.mark.asyncio
    async def test_export(self, app):
        async with app:
            await app.execute("create_note", {"title": "One"})
            full = await app.execute("gist_export")
            minimal = await app.execute("gist_export", {"format": "minimal"})
        assert full.data["format"] == "full"
        assert full.data["data"]["version"] == 1
        assert full.data["itemCount"]["breakdown"]["notes"] == 1
        assert minimal.data["data"]["notes"][0]["title"] == "One"


class TestCommandBoundary:

    @pytest.mark.asyncio
    async def test_unknown_command(self, app):
        async with app:
            result = await app.execute("launch_rocket", {})
        assert not result.success
        assert result.message == "Unknown command: launch_rocket"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged(self, app, tmp_path, monkeypatch):
        async def explode(args):
            raise RuntimeError("kaboom")

        async with app:
            monkeypatch.setattr(app.commands, "get_tasks", explode)
            result = await app.execute("get_tasks", {})
        assert not result.success
        assert result.message == "Internal error in get_tasks: kaboom"
        assert "kaboom" in (tmp_path / "bytepad-errors.log").read_text()
        assert not (tmp_path / "home" / ".bytepad").exists()

    @pytest.mark.asyncio
    async def test_not_started_raises(self, app):
        with pytest.raises(NotInitializedError):
            await app.execute("get_tasks", {})
        await app.aclose()

    def test_command_names(self, app):
        assert "create_note" in app.command_names
        assert "gist_sync" in app.command_names
        assert len(app.command_names) == len(set(app.command_names))
