"""
Data types for the bytepad dataset and its sync configuration.

The dataset is a single JSON document shared with the desktop app and the
remote Gist mirror, so field names follow the app's camelCase format.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


STORE_VERSION = 1

# Ordered collections; every item carries a unique "id" within its collection
COLLECTIONS = (
    "notes",
    "tasks",
    "habits",
    "journal",
    "bookmarks",
    "dailyNotes",
    "ideas",
    "focusSessions",
)

# Singleton aggregates, replaced wholesale on update
SINGLETONS = ("gamification", "focusStats")

MIN_SYNC_INTERVAL = 1  # minutes
DEFAULT_SYNC_INTERVAL = 5  # minutes


def utc_now() -> str:
    """Current UTC timestamp as ISO-8601 with millisecond precision and 'Z'.

    Same shape the desktop app writes, so timestamps from either side
    compare consistently.
    """
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(ts: str) -> datetime:
    """Parse an ISO timestamp to a timezone-aware UTC datetime.

    Accepts 'Z' or '+00:00' suffixes; naive values are taken as UTC.
    """
    dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def today() -> str:
    """Today's UTC date as YYYY-MM-DD."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def generate_id() -> str:
    return uuid.uuid4().hex[:13]


def default_gamification() -> dict[str, Any]:
    return {
        "level": 1,
        "currentXP": 0,
        "totalXP": 0,
        "tasksCompleted": 0,
        "tasksCompletedToday": 0,
        "habitsCompleted": 0,
        "habitsCompletedToday": 0,
        "pomodorosCompleted": 0,
        "notesCreated": 0,
        "journalEntries": 0,
        "perfectDays": 0,
        "currentStreak": 0,
        "bestStreak": 0,
        "lastActiveDate": None,
        "achievements": [],
    }


def default_focus_stats() -> dict[str, Any]:
    return {
        "totalSessions": 0,
        "totalFocusTime": 0,
        "todayFocusTime": 0,
        "weekFocusTime": 0,
        "averageSessionLength": 0,
        "longestSession": 0,
        "sessionsPerTask": {},
    }


def empty_data() -> dict[str, Any]:
    data: dict[str, Any] = {name: [] for name in COLLECTIONS}
    data["gamification"] = default_gamification()
    data["focusStats"] = default_focus_stats()
    return data


def _singleton(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' must be an object")
    return value


@dataclass(frozen=True)
class ItemCount:
    """Item totals across all collections."""
    total: int
    breakdown: dict[str, int]

    def to_dict(self) -> dict:
        return {"total": self.total, "breakdown": dict(self.breakdown)}


@dataclass
class StoreData:
    """
    The full dataset document.

    ``data`` maps each collection name to a list of item dicts, plus the
    two singleton aggregates. ``last_modified`` is serialized as
    ``lastModified`` and is stamped by the local store on every save.
    """
    version: int = STORE_VERSION
    last_modified: str = field(default_factory=utc_now)
    data: dict[str, Any] = field(default_factory=empty_data)

    @classmethod
    def from_dict(cls, raw: Any) -> "StoreData":
        """Build a document from its JSON form, filling in missing parts.

        Raises:
            ValueError: If the payload is not a dataset document
        """
        if not isinstance(raw, dict) or not isinstance(raw.get("data"), dict):
            raise ValueError("Not a bytepad dataset document (missing 'data' object)")
        last_modified = raw.get("lastModified")
        if not isinstance(last_modified, str):
            raise ValueError("Dataset document has no 'lastModified' timestamp")
        parse_timestamp(last_modified)

        data = copy.deepcopy(raw["data"])
        for name in COLLECTIONS:
            value = data.get(name)
            if value is None:
                data[name] = []
            elif not isinstance(value, list):
                raise ValueError(f"Collection '{name}' must be a list")
        gamification = default_gamification()
        gamification.update(_singleton(data, "gamification"))
        data["gamification"] = gamification
        focus_stats = default_focus_stats()
        focus_stats.update(_singleton(data, "focusStats"))
        data["focusStats"] = focus_stats

        version = raw.get("version", STORE_VERSION)
        if isinstance(version, bool) or not isinstance(version, int):
            raise ValueError(f"Dataset document has an invalid version: {version!r}")

        return cls(
            version=version,
            last_modified=last_modified,
            data=data,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastModified": self.last_modified,
            "data": self.data,
        }

    def count_items(self) -> ItemCount:
        breakdown = {
            name: len(self.data.get(name) or []) for name in COLLECTIONS
        }
        return ItemCount(total=sum(breakdown.values()), breakdown=breakdown)

    def copy(self) -> "StoreData":
        return StoreData(
            version=self.version,
            last_modified=self.last_modified,
            data=copy.deepcopy(self.data),
        )


@dataclass
class SyncConfig:
    """
    Remote sync settings.

    The token is held in memory only; ``to_dict`` always writes it as null.
    """
    token: Optional[str] = None
    gist_id: Optional[str] = None
    auto_sync: bool = False
    sync_interval: int = DEFAULT_SYNC_INTERVAL
    last_sync_at: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.token and self.gist_id)

    @classmethod
    def from_dict(cls, raw: dict) -> "SyncConfig":
        interval = raw.get("syncInterval", DEFAULT_SYNC_INTERVAL)
        if not isinstance(interval, (int, float)) or isinstance(interval, bool):
            interval = DEFAULT_SYNC_INTERVAL
        return cls(
            token=raw.get("token") or None,
            gist_id=raw.get("gistId") or None,
            auto_sync=raw.get("autoSync") is True,
            sync_interval=max(MIN_SYNC_INTERVAL, int(interval)),
            last_sync_at=raw.get("lastSyncAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": None,
            "gistId": self.gist_id,
            "autoSync": self.auto_sync,
            "syncInterval": self.sync_interval,
            "lastSyncAt": self.last_sync_at,
        }


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one command, as returned over the command protocol."""
    success: bool
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            d["data"] = self.data
        return d
