"""
Error types for bytepad, and crash logging for the command boundary.

Logs full stack traces for debugging while commands return clean messages.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class BytepadError(Exception):
    """Base class for errors a command can report to its caller."""

    def details(self) -> Optional[dict]:
        """Structured data to attach to a failed command result."""
        return None


class NotInitializedError(BytepadError):
    """Store accessed before load(). A programming error, not a user error."""


class NotFoundError(BytepadError):
    """Entity or remote object does not exist."""


class ValidationError(BytepadError, ValueError):
    """Malformed command arguments."""


class ConflictError(BytepadError):
    """Entity already exists (e.g. a URL that is already bookmarked)."""

    def __init__(self, message: str, existing_id: str):
        super().__init__(message)
        self.existing_id = existing_id

    def details(self) -> dict:
        return {"existingId": self.existing_id}


class SyncNotConfiguredError(BytepadError):
    """Remote credential or remote id missing."""


class DataLossRiskError(BytepadError):
    """A sync would overwrite a much larger dataset with a much smaller one."""

    def __init__(self, direction: str, local_items: int, remote_items: int):
        if direction == "pull":
            message = (
                f"Remote has {remote_items} items, local has {local_items}. "
                "Use force=true to override."
            )
        else:
            message = (
                f"Local has {local_items} items, remote has {remote_items}. "
                "Use force=true to override."
            )
        super().__init__(message)
        self.direction = direction
        self.local_items = local_items
        self.remote_items = remote_items

    def details(self) -> dict:
        return {
            "direction": self.direction,
            "localItems": self.local_items,
            "remoteItems": self.remote_items,
        }


class RemoteError(BytepadError):
    """Error talking to the remote mirror."""


class AuthError(RemoteError):
    """Credential missing, invalid, or lacking permission."""


class NetworkError(RemoteError):
    """Transport failure reaching the remote mirror."""


class RequestTimeout(NetworkError):
    """Remote call exceeded its timeout."""


class RemoteDataError(RemoteError):
    """Remote object exists but its content is not a dataset document."""


def _error_log_path(data_dir: Optional[Path] = None) -> Path:
    """Resolve error log path: the given data dir, else BYTEPAD_DATA_DIR."""
    if data_dir is None:
        env_dir = os.environ.get("BYTEPAD_DATA_DIR") or os.environ.get("DATA_DIR")
        data_dir = Path(env_dir) if env_dir else Path.home() / ".bytepad"
    return Path(data_dir) / "bytepad-errors.log"


def log_exception(exc: Exception, context: str = "", data_dir: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        data_dir: Directory holding the log; resolved from the environment if omitted

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(data_dir)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # can't write the error log, don't crash over it
    return log_path
