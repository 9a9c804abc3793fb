"""Deadline scheduler: one timer per live session, exactly one auto-submit.

Each armed session moves through ``running -> submitting -> closed``. The
timer only ever finalizes through the same conditional update as an explicit
submit, so whichever path reaches the database first wins and the other
observes AlreadySubmitted. Timers are an in-process convenience: after a
restart, :meth:`DeadlineScheduler.reconcile` rebuilds them from the persisted
``started_at`` values.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from sqlmodel import Session, select
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from exam_core.config import get_settings
from exam_core.errors import AlreadySubmitted, StorageUnavailable
from exam_core.models import Exam, Submission, utcnow
from exam_core.services.session_manager import finalize_submission
from exam_core.services.timing import deadline_for

logger = logging.getLogger(__name__)


class DeadlineState(str, Enum):
    RUNNING = "running"
    SUBMITTING = "submitting"
    CLOSED = "closed"


@dataclass
class ScheduledDeadline:
    submission_id: int
    deadline: datetime
    state: DeadlineState = DeadlineState.RUNNING
    timer: Optional[threading.Timer] = field(default=None, repr=False)


class DeadlineScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = utcnow,
        finalize_attempts: Optional[int] = None,
        retry_wait_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self._clock = clock
        self._finalize_attempts = finalize_attempts or settings.finalize_retry_attempts
        self._retry_wait = (
            settings.retry_wait_seconds if retry_wait_seconds is None else retry_wait_seconds
        )
        self._entries: Dict[int, ScheduledDeadline] = {}
        self._lock = threading.Lock()

    # -- registry -----------------------------------------------------------

    def arm(self, submission_id: int, deadline: datetime) -> ScheduledDeadline:
        """Schedule the single fire for a session, replacing any stale timer."""
        delay = max(0.0, (deadline - self._clock()).total_seconds())
        with self._lock:
            current = self._entries.get(submission_id)
            if current is not None and current.state != DeadlineState.RUNNING:
                # already finalizing; nothing to re-arm
                return current
            if current is not None and current.timer is not None:
                current.timer.cancel()
            entry = ScheduledDeadline(submission_id=submission_id, deadline=deadline)
            timer = threading.Timer(delay, self._on_timer, args=(entry,))
            timer.daemon = True
            entry.timer = timer
            self._entries[submission_id] = entry
            timer.start()
        logger.info(
            "Armed deadline for submission %s at %s (in %.0fs)",
            submission_id, deadline.isoformat(), delay,
        )
        return entry

    def cancel(self, submission_id: int) -> bool:
        """Cancel a pending fire. Returns False if none was running."""
        with self._lock:
            entry = self._entries.get(submission_id)
            if entry is None or entry.state != DeadlineState.RUNNING:
                return False
            if entry.timer is not None:
                entry.timer.cancel()
            del self._entries[submission_id]
        logger.info("Cancelled deadline for submission %s", submission_id)
        return True

    def state_of(self, submission_id: int) -> Optional[DeadlineState]:
        with self._lock:
            entry = self._entries.get(submission_id)
            return entry.state if entry else None

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def shutdown(self) -> None:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            if entry.timer is not None:
                entry.timer.cancel()
        logger.info("Deadline scheduler stopped (%d timers cancelled)", len(entries))

    # -- firing -------------------------------------------------------------

    def _on_timer(self, entry: ScheduledDeadline) -> None:
        with self._lock:
            # A re-arm replaced this entry; its timer is stale.
            if self._entries.get(entry.submission_id) is not entry:
                return
        try:
            self.fire(entry.submission_id)
        except StorageUnavailable:
            logger.exception(
                "Auto-submit for submission %s failed; it will be finalized on resume",
                entry.submission_id,
            )

    def fire(self, submission_id: int) -> Optional[Submission]:
        """Auto-submit a session now.

        Returns the finalized submission, or None if the entry was not running
        or another path finalized first.

        Raises:
            StorageUnavailable: If the final state could not be confirmed
        """
        with self._lock:
            entry = self._entries.get(submission_id)
            if entry is None or entry.state != DeadlineState.RUNNING:
                return None
            entry.state = DeadlineState.SUBMITTING
            if entry.timer is not None:
                entry.timer.cancel()
        try:
            return self._finalize_confirmed(submission_id)
        finally:
            with self._lock:
                entry.state = DeadlineState.CLOSED
                if self._entries.get(submission_id) is entry:
                    del self._entries[submission_id]

    def _finalize_confirmed(self, submission_id: int) -> Optional[Submission]:
        """Finalize, reissuing on transient failure, then re-read to confirm.

        Reissuing is safe because finalize is conditional on ``submitted_at``
        still being null; a retry after a commit that did land just reports
        AlreadySubmitted.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(StorageUnavailable),
            stop=stop_after_attempt(self._finalize_attempts),
            wait=wait_fixed(self._retry_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                with self._session_factory() as session:
                    try:
                        finalize_submission(
                            session, submission_id, auto_submitted=True, now=self._clock()
                        )
                    except AlreadySubmitted:
                        logger.info(
                            "Deadline fired for submission %s after it was submitted",
                            submission_id,
                        )
                        return None
                    return self._confirm(session, submission_id)
        return None

    def _confirm(self, session: Session, submission_id: int) -> Submission:
        submission = session.get(Submission, submission_id, populate_existing=True)
        if submission is None or submission.submitted_at is None or submission.total_score is None:
            raise StorageUnavailable(
                f"Finalize of submission {submission_id} could not be confirmed"
            )
        return submission

    # -- restart ------------------------------------------------------------

    def reconcile(self, now: Optional[datetime] = None) -> int:
        """Re-arm every in-progress session from persisted state.

        Sessions already past their deadline are finalized immediately.
        Returns the number of sessions handled.
        """
        now = now or self._clock()
        with self._session_factory() as session:
            rows = session.exec(
                select(Submission, Exam)
                .where(Submission.exam_id == Exam.id)
                .where(Submission.submitted_at.is_(None))
            ).all()
            pending = [(s.id, deadline_for(e, s)) for s, e in rows]

        expired = 0
        for submission_id, deadline in pending:
            if deadline > now:
                self.arm(submission_id, deadline)
                continue
            expired += 1
            with self._lock:
                self._entries.setdefault(
                    submission_id,
                    ScheduledDeadline(submission_id=submission_id, deadline=deadline),
                )
            try:
                self.fire(submission_id)
            except StorageUnavailable:
                logger.exception(
                    "Could not finalize expired submission %s during reconcile",
                    submission_id,
                )
        logger.info(
            "Reconciled %d open sessions (%d past deadline)", len(pending), expired
        )
        return len(pending)
