"""Firmware revision invariant checks.

A revision has the form ``aa.bb.cc``: ``aa`` is the development stage,
``bb`` the primary image revision and ``cc`` the secondary image revision.
Flashing one image may only change that image's segment.
"""

import logging
from typing import Optional
from pydantic import BaseModel

from fwverify.models.status import Slot

SEPARATOR = "."
UNKNOWN_MARKER = "?"
SEGMENT_COUNT = 3


class RevisionCheck(BaseModel):
    """Passed or Violated(detail)."""

    passed: bool
    detail: str = ""


def split_revision(revision: str) -> Optional[list[str]]:
    """Split a revision into its three segments, or None if malformed."""
    segments = revision.split(SEPARATOR)
    if len(segments) != SEGMENT_COUNT:
        return None
    return segments


def check_revision(revision_before: str, revision_after: str, slot: Slot) -> RevisionCheck:
    """Verify that an update changed only the segment owned by ``slot``.

    Primary updates must keep segments 0 and 2; secondary updates must keep
    segment 1. A ``revision_before`` carrying the unknown marker has no
    baseline and always passes.

    Args:
        revision_before: Revision read before the update started
        revision_after: Revision read after the update succeeded
        slot: Slot that was updated

    Returns:
        RevisionCheck with passed=False and both revisions in the detail on mismatch
    """
    logger = logging.getLogger("fwverify.revision")
    label = "Primary" if slot is Slot.PRIMARY else "Secondary"
    detail = f"{label} Fw Revision - Before: {revision_before} After: {revision_after}"

    if UNKNOWN_MARKER in revision_before:
        logger.debug(f"No baseline revision ({revision_before}), check skipped")
        return RevisionCheck(passed=True, detail=detail)

    before = split_revision(revision_before)
    after = split_revision(revision_after)
    if before is None or after is None:
        logger.error(f"Malformed revision: {detail}")
        return RevisionCheck(passed=False, detail=f"Malformed revision: {detail}")

    if slot is Slot.PRIMARY:
        # outside segments must stay (xx.AB.xx)
        unchanged = before[0] == after[0] and before[2] == after[2]
    else:
        # middle segment must stay (AB.xx.CD)
        unchanged = before[1] == after[1]

    if not unchanged:
        logger.error(f"Revision invariant violated: {detail}")
        return RevisionCheck(passed=False, detail=detail)

    logger.info(detail)
    return RevisionCheck(passed=True, detail=detail)
