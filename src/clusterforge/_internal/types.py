"""Shared type aliases for ClusterForge."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

# Host and port pair, e.g. "localhost:51336".
Address = str

# Async test body receiving the driver-side client.
TestFn = Callable[[Any], Awaitable[None]]
