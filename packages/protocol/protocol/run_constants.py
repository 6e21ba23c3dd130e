"""Shared constants for run ids. Same rules in the run worker, CLI and event consumers."""

import re
import uuid

# 32 lowercase hex (uuid4().hex).
RUN_ID_PATTERN = re.compile(r"^[a-f0-9]{32}$")

MAX_RETRIES = 3
DEFAULT_APPROVAL_TIMEOUT_S = 60.0


def new_run_id() -> str:
    return uuid.uuid4().hex


def is_valid_run_id(s: str | None) -> bool:
    """Return True if s is a valid run id (32 lowercase hex)."""
    if not s or not isinstance(s, str):
        return False
    return bool(RUN_ID_PATTERN.match(s))
