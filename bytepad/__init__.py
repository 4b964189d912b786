"""
bytepad: automation server for the Bytepad productivity app.

Lets AI agents (over MCP) and scripts change the shared Bytepad dataset.
Changes go to the desktop app when it is running, and to a local file
store otherwise; the file store can be mirrored to a GitHub Gist.
"""

from .api import Bytepad
from .types import StoreData, SyncConfig, ToolResult

__all__ = ["Bytepad", "StoreData", "SyncConfig", "ToolResult"]
