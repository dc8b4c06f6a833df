"""Write ledger: local write counter plus snapshot watermark.

Every log write this tab initiates gets a monotonically increasing
sequence number. An entry stays open until a subscription snapshot
reflects it, the write fails, or it goes stale. The watermark is the
highest sequence number at or below which every entry is retired; a
snapshot may replace the local log wholesale only when the ledger is
caught up (``watermark == local_seq``). Otherwise the reconciler rebases
the snapshot onto the open entries.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from chatsync.shared.models.message import Message

logger = logging.getLogger(__name__)


class WriteKind(Enum):
    APPEND = "append"
    REPLACE = "replace"


@dataclass
class PendingWrite:
    seq: int
    kind: WriteKind
    session_id: str
    # APPEND: the appended message id. REPLACE: unused.
    message_id: str | None = None
    # REPLACE: ids truncated away by this write.
    removed_ids: frozenset[str] = field(default_factory=frozenset)
    started_at: float = 0.0
    acknowledged: bool = False

    def reflected_in(self, snapshot_ids: set[str]) -> bool:
        if self.kind is WriteKind.APPEND:
            return self.message_id in snapshot_ids
        return self.removed_ids.isdisjoint(snapshot_ids)


class WriteLedger:
    """Tracks locally initiated writes that a snapshot may not show yet."""

    def __init__(
        self,
        stale_after: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stale_after = stale_after
        self._clock = clock
        self._local_seq = 0
        self._watermark = 0
        self._open: dict[int, PendingWrite] = {}

    @property
    def local_seq(self) -> int:
        return self._local_seq

    @property
    def watermark(self) -> int:
        return self._watermark

    @property
    def caught_up(self) -> bool:
        return self._watermark >= self._local_seq

    def begin_append(self, session_id: str, message_id: str) -> int:
        return self._begin(PendingWrite(
            seq=0, kind=WriteKind.APPEND, session_id=session_id,
            message_id=message_id,
        ))

    def begin_replace(self, session_id: str, removed_ids: Iterable[str]) -> int:
        return self._begin(PendingWrite(
            seq=0, kind=WriteKind.REPLACE, session_id=session_id,
            removed_ids=frozenset(removed_ids),
        ))

    def _begin(self, entry: PendingWrite) -> int:
        self._local_seq += 1
        entry.seq = self._local_seq
        entry.started_at = self._clock()
        self._open[entry.seq] = entry
        logger.debug(
            "Ledger begin #%d %s session=%s", entry.seq, entry.kind.value,
            entry.session_id,
        )
        return entry.seq

    def acknowledge(self, seq: int) -> None:
        """The store accepted write *seq*; keep it open until a snapshot shows it."""
        entry = self._open.get(seq)
        if entry is not None:
            entry.acknowledged = True
            entry.started_at = self._clock()

    def fail(self, seq: int) -> None:
        """The store rejected write *seq*; it will never be reflected."""
        self._retire([seq])

    def pending(self, session_id: str) -> list[PendingWrite]:
        """Open, non-stale entries for *session_id* in sequence order."""
        self._expire()
        return [
            e for seq, e in sorted(self._open.items())
            if e.session_id == session_id
        ]

    def observe(self, session_id: str, snapshot_ids: set[str]) -> bool:
        """Retire entries reflected by a snapshot; return whether caught up."""
        self._expire()
        reflected = [
            seq for seq, e in self._open.items()
            if e.session_id == session_id and e.reflected_in(snapshot_ids)
        ]
        self._retire(reflected)
        return not any(e.session_id == session_id for e in self._open.values())

    def discard_session(self, session_id: str) -> None:
        """Forget every entry for a session that is no longer visible."""
        self._retire([
            seq for seq, e in self._open.items() if e.session_id == session_id
        ])

    def _expire(self) -> None:
        if self._stale_after <= 0:
            return
        now = self._clock()
        stale = [
            seq for seq, e in self._open.items()
            if now - e.started_at > self._stale_after
        ]
        if stale:
            logger.warning(
                "Ledger giving up on %d unreflected write(s): %s",
                len(stale), ", ".join(f"#{s}" for s in stale),
            )
            self._retire(stale)

    def _retire(self, seqs: Iterable[int]) -> None:
        for seq in seqs:
            self._open.pop(seq, None)
        if self._open:
            self._watermark = min(self._open) - 1
        else:
            self._watermark = self._local_seq


def rebase(
    snapshot_messages: list[Message],
    local_messages: list[Message],
    pending: list[PendingWrite],
) -> list[Message]:
    """Merge a lagging snapshot log with the open local writes.

    Drops messages that pending truncations removed, then re-appends
    pending optimistic messages (in local order) the snapshot lacks.
    Duplicates are collapsed by id; the first occurrence wins.
    """
    removed: set[str] = set()
    pending_appends: set[str] = set()
    for entry in pending:
        if entry.kind is WriteKind.REPLACE:
            removed |= entry.removed_ids
        elif entry.message_id is not None:
            pending_appends.add(entry.message_id)

    merged: list[Message] = []
    seen: set[str] = set()
    for msg in snapshot_messages:
        if msg.id in removed or msg.id in seen:
            continue
        merged.append(msg)
        seen.add(msg.id)
    for msg in local_messages:
        if msg.id in pending_appends and msg.id not in seen:
            merged.append(msg)
            seen.add(msg.id)
    return merged
