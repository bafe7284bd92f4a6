"""
Streaming text merge.

Providers deliver incremental text in two styles: pure deltas ("Hel", "lo")
and cumulative snapshots ("Hel", "Hello").  Some also resend a short trailing
echo of what they already sent.  merge_streaming_chunk() folds any of these
into one monotonically growing text and reports only the newly appended part,
so a sink never re-renders text it has already shown.

The same function runs on the generating side (normalising provider deltas)
and on the reading side (rebuilding text from a possibly redundant event
stream).  StreamState carries the per-run bookkeeping; there is no module-level
buffer, so concurrent runs and readers never share state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

OVERLAP_WINDOW = 2000
MIN_OVERLAP = 7


class MergeResult(NamedTuple):
    next: str       # full accumulated text after the merge
    appended: str   # suffix that was not present before


def merge_streaming_chunk(current: str, incoming: str) -> MergeResult:
    """
    Reconcile the running buffer with one incoming fragment.

    Rules, applied in order:
      1. Empty incoming: nothing changes.
      2. Empty current: incoming is everything.
      3. Incoming restates all of current (cumulative snapshot): incoming wins,
         the appended part is whatever follows the old text.
      4. Tail of current equals head of incoming for at least MIN_OVERLAP
         characters (searching up to OVERLAP_WINDOW, longest first): append
         only the non-overlapping remainder.
      5. Otherwise concatenate.
    """
    if not incoming:
        return MergeResult(current, "")
    if not current:
        return MergeResult(incoming, incoming)

    if len(incoming) >= len(current) and incoming.startswith(current):
        return MergeResult(incoming, incoming[len(current):])

    max_overlap = min(len(current), len(incoming), OVERLAP_WINDOW)
    for size in range(max_overlap, MIN_OVERLAP - 1, -1):
        if current.endswith(incoming[:size]):
            appended = incoming[size:]
            return MergeResult(current + appended, appended)

    return MergeResult(current + incoming, incoming)


@dataclass
class StreamState:
    """Accumulated text for one run or one reader session."""

    text: str = ""
    has_seen_non_whitespace: bool = False
    last_applied_fragment: str = ""

    def apply(self, incoming: str, *, merge: bool = True) -> str:
        """
        Fold one fragment into the state and return the appended suffix.

        With merge=False the fragment is concatenated verbatim (chat mode,
        where the transport guarantees true deltas).
        """
        if merge:
            self.text, appended = merge_streaming_chunk(self.text, incoming)
        else:
            self.text += incoming
            appended = incoming
        if incoming:
            self.last_applied_fragment = incoming
        if appended and not self.has_seen_non_whitespace and appended.strip():
            self.has_seen_non_whitespace = True
        return appended

    def reset(self) -> None:
        self.text = ""
        self.has_seen_non_whitespace = False
        self.last_applied_fragment = ""
