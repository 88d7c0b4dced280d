"""
Line-presence diff estimate between two text blobs.

This is a coarse heuristic, not a sequence-alignment diff: a line counts as
added when its value appears nowhere in the old text, and as removed when it
appears nowhere in the new text.  A line edited by a single character is one
full add plus one full remove.  Stored file-history records carry this
summary, so the counting rules must stay stable.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class DiffSummary:
    """Result of :func:`calculate_diff`."""
    added: int
    removed: int
    changed: int

    def to_json(self) -> str:
        """Serialise to the format stored in ``file_history.diff``."""
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "DiffSummary":
        data = json.loads(raw)
        return cls(
            added=int(data["added"]),
            removed=int(data["removed"]),
            changed=int(data["changed"]),
        )


def calculate_diff(old_content: str, new_content: str) -> DiffSummary:
    """
    Compare *old_content* and *new_content* by line membership.

    Parameters
    ----------
    old_content:
        Previous text.
    new_content:
        Current text.

    Returns
    -------
    DiffSummary
        ``added``/``removed`` count every occurrence of a line missing from
        the other side; ``changed`` is the larger of the two.
    """
    old_lines = old_content.split("\n")
    new_lines = new_content.split("\n")
    old_set = set(old_lines)
    new_set = set(new_lines)

    added = sum(1 for line in new_lines if line not in old_set)
    removed = sum(1 for line in old_lines if line not in new_set)
    return DiffSummary(added=added, removed=removed, changed=max(added, removed))
