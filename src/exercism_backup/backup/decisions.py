"""Decide what to do with a solution's content directory."""

from __future__ import annotations

from enum import Enum

from .options import OverwritePolicy


class ContentAction(str, Enum):
    """Action applied to a solution's content directory."""

    CREATE_FRESH = "create_fresh"
    PURGE_AND_RECREATE = "purge_and_recreate"
    SKIP = "skip"


def decide_content_action(
    exists: bool, stale: bool, policy: OverwritePolicy
) -> ContentAction:
    """Combine directory existence, staleness and the overwrite policy.

    ``SKIP`` only suppresses re-fetching the solution's files; iterations are
    synchronized independently.
    """
    if not exists:
        return ContentAction.CREATE_FRESH
    if policy is OverwritePolicy.ALWAYS:
        return ContentAction.PURGE_AND_RECREATE
    if stale and policy is OverwritePolicy.IF_NEWER:
        return ContentAction.PURGE_AND_RECREATE
    return ContentAction.SKIP
