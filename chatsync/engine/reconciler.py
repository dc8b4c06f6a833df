"""Reconciliation engine - merge subscription snapshots into the session store.

When the write ledger is caught up a snapshot replaces the local session
wholesale; messages carry client-generated ids so the echo of an
optimistic append is the same message, not a duplicate. While local
writes are still unreflected the snapshot is rebased onto them instead,
and the newest such snapshot is re-applied once a write settles.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from chatsync.shared.models.session import Session

from .errors import AccessDenied, MalformedSnapshot, NotFound
from .session_store import SessionStore
from .watermark import WriteLedger, rebase

logger = logging.getLogger(__name__)

# (session_id, reason, detail)
UnavailableCallback = Callable[[str | None, str, str], None]


class Reconciler:
    """Applies remote snapshots of the watched session to the session store."""

    def __init__(
        self,
        store: SessionStore,
        ledger: WriteLedger,
        principal_id: str,
        on_unavailable: UnavailableCallback | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._principal = principal_id
        self._on_unavailable = on_unavailable
        self._watched: str | None = None
        self._deferred: Session | None = None
        self.applied_count = 0
        self.deferred_count = 0

    @property
    def watched_id(self) -> str | None:
        return self._watched

    def watch(self, session_id: str | None) -> None:
        """Start accepting snapshots for *session_id* (None stops)."""
        if self._watched and self._watched != session_id:
            self._ledger.discard_session(self._watched)
        self._watched = session_id
        self._deferred = None

    def apply(self, snapshot: Session | None) -> None:
        """Handle one subscription delivery. Never raises."""
        try:
            self._apply(snapshot)
        except Exception as exc:
            logger.error("Reconciliation failed; dropping session view", exc_info=True)
            self.lose_access("malformed", str(exc))

    def _apply(self, snapshot: Session | None) -> None:
        if self._watched is None:
            logger.debug("Snapshot ignored: no session watched")
            return
        if snapshot is None:
            self.lose_access("not_found", "The session no longer exists.")
            return

        active = self._store.get_active()
        if snapshot.session_id != self._watched:
            if active is None:
                logger.debug(
                    "Ignoring snapshot for %s while watching %s",
                    snapshot.session_id, self._watched,
                )
                return
            self.lose_access(
                "access_lost",
                f"Snapshot for {snapshot.session_id} does not match the open session.",
            )
            return
        if active is not None and active.session_id != snapshot.session_id:
            self.lose_access("access_lost", "The open session changed underneath.")
            return
        if not snapshot.is_member(self._principal):
            self.lose_access("access_lost", "You are not a member of this session.")
            return

        snapshot_ids = set(snapshot.message_ids())
        self._store.confirm_appends(snapshot_ids)
        if self._ledger.observe(snapshot.session_id, snapshot_ids):
            self._deferred = None
            self._store.replace_active(snapshot)
            self.applied_count += 1
            logger.debug(
                "Snapshot applied wholesale: %s (%d messages, watermark=%d)",
                snapshot.session_id, snapshot.message_count, self._ledger.watermark,
            )
            return

        # Local writes in flight: keep them visible on top of the snapshot.
        self._deferred = snapshot
        self.deferred_count += 1
        pending = self._ledger.pending(snapshot.session_id)
        local = active.messages if active is not None else []
        merged = rebase(snapshot.messages, local, pending)
        self._store.replace_active(snapshot.with_messages(merged))
        logger.debug(
            "Snapshot rebased: %s (%d pending write(s), watermark=%d/%d)",
            snapshot.session_id, len(pending), self._ledger.watermark,
            self._ledger.local_seq,
        )

    def refresh(self) -> None:
        """Re-apply the last deferred snapshot after a local write settled."""
        if self._deferred is None:
            return
        snapshot, self._deferred = self._deferred, None
        self.apply(snapshot)

    def on_error(self, exc: Exception) -> None:
        """Subscription error callback. Never raises."""
        if isinstance(exc, MalformedSnapshot):
            self.lose_access("malformed", str(exc))
        elif isinstance(exc, (AccessDenied, NotFound)):
            self.refused(exc)
        else:
            logger.warning("Subscription error for %s: %s", self._watched, exc)

    def refused(self, exc: AccessDenied | NotFound) -> None:
        """Drop the view after the store refused access or lost the document."""
        reason = "not_found" if isinstance(exc, NotFound) else "access_lost"
        self.lose_access(reason, str(exc))

    def lose_access(self, reason: str, detail: str = "") -> None:
        """Clear the active session and report it unavailable."""
        session_id = self._watched
        logger.info("Session %s unavailable (%s): %s", session_id, reason, detail)
        if session_id is not None:
            self._ledger.discard_session(session_id)
        self._deferred = None
        self._store.replace_active(None)
        if self._on_unavailable is not None:
            try:
                self._on_unavailable(session_id, reason, detail)
            except Exception:
                logger.warning("Unavailable callback failed", exc_info=True)
