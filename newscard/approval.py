"""
Approval parsing.

A reviewer approves candidates by commenting ``approve: 1,3`` on the
proposal issue. Anything without the marker is simply not an approval.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path

APPROVE_PATTERN = re.compile(r"\bapprove\s*:\s*([0-9,\s]+)", re.IGNORECASE)


def parse_approval(text: str) -> list[int]:
    """Return the approved candidate numbers, deduplicated and ascending.

    >>> parse_approval("approve: 1,3,3,2")
    [1, 2, 3]
    """
    match = APPROVE_PATTERN.search(text or "")
    if not match:
        return []
    numbers = set()
    for part in match.group(1).split(","):
        part = part.strip()
        if part.isdigit() and int(part) > 0:
            numbers.add(int(part))
    return sorted(numbers)


@dataclass
class ApprovalEvent:
    numbers: list[int] = field(default_factory=list)
    batch_id: int | None = None
    author: str = "unknown"


def read_event(path: Path) -> ApprovalEvent:
    """Read a GitHub ``issue_comment`` event payload."""
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)
    comment = payload.get("comment") or {}
    issue = payload.get("issue") or {}
    return ApprovalEvent(
        numbers=parse_approval(comment.get("body") or ""),
        batch_id=issue.get("number"),
        author=(comment.get("user") or {}).get("login", "unknown"),
    )
