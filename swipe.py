"""Swipe transition engine.

Each seeker gets a ``FeedSession``: the queue produced by the feed builder,
a cursor into it and the transition currently being written, if any. The
HTTP handlers never touch the session directly; they ask the engine to
load it or to commit a decision.

A (seeker, job) pair starts unseen and moves to applied or skipped exactly
once. The engine reports every outcome as a ``SwipeResponse`` rather than
raising, so a failed write leaves the cursor where it was and the seeker
can simply swipe again.

Writes run in a worker thread on their own DB session. A write that
outlives ``swipe_timeout_seconds`` is reported as an error straight away,
but the session stays pending, ignoring further swipes, until the thread
actually finishes.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog
from aws_embedded_metrics import metric_scope
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
import logic
import models
import schemas
from database import SessionLocal
from errors import CheerError, ConflictError, NotFoundError, TransientIOError
from matching import skill_set
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)

APPLY = "apply"
SKIP = "skip"


@dataclass
class PendingTransition:
    job_id: str
    action: str
    started_at: float = field(default_factory=time.monotonic)
    # Future of the worker thread doing the write, once it has started
    write: Optional[asyncio.Future] = None


@dataclass
class FeedSession:
    seeker_id: str
    skills_key: frozenset
    feed_queue: List[schemas.JobCard]
    cursor: int = 0
    pending_transition: Optional[PendingTransition] = None

    @property
    def current_card(self) -> Optional[schemas.JobCard]:
        if self.cursor < len(self.feed_queue):
            return self.feed_queue[self.cursor]
        return None

    def view(self) -> schemas.FeedView:
        total = len(self.feed_queue)
        card = self.current_card
        return schemas.FeedView(
            status="ready" if card else "empty",
            card=card,
            position=self.cursor + 1 if card else total,
            total=total,
            remaining=total - min(self.cursor, total),
        )


class FeedSessionManager:
    """In-memory feed sessions keyed by seeker id."""

    def __init__(self):
        self.sessions: Dict[str, FeedSession] = {}

    def get(self, seeker_id: str) -> Optional[FeedSession]:
        return self.sessions.get(seeker_id)

    def start(self, seeker_id: str, skills, feed_queue: List[schemas.JobCard]) -> FeedSession:
        session = FeedSession(seeker_id=seeker_id, skills_key=skill_set(skills), feed_queue=list(feed_queue))
        self.sessions[seeker_id] = session
        logger.info("Feed session started", seeker_id=seeker_id, jobs=len(session.feed_queue))
        return session

    def invalidate(self, seeker_id: str) -> None:
        """Drop a seeker's session so the next load rebuilds the feed."""
        if self.sessions.pop(seeker_id, None) is not None:
            logger.info("Feed session invalidated", seeker_id=seeker_id)

    def clear(self) -> None:
        self.sessions.clear()


def resolve_gesture(request: schemas.SwipeRequest, threshold: float) -> Optional[str]:
    """Map a button press or drag to apply/skip; a short drag maps to None."""
    if request.direction is not None:
        return APPLY if request.direction == "right" else SKIP
    if request.drag_offset > threshold:
        return APPLY
    if request.drag_offset < -threshold:
        return SKIP
    return None


class SwipeEngine:
    def __init__(self, sessions: FeedSessionManager, session_factory=SessionLocal):
        self.sessions = sessions
        # Decision writes run in worker threads, each on its own DB session
        self.session_factory = session_factory

    @staticmethod
    def _is_current(session: Optional[FeedSession], seeker: models.SeekerProfile) -> bool:
        return session is not None and session.skills_key == skill_set(seeker.skills)

    def load(
        self,
        db: Session,
        seeker: models.SeekerProfile,
        refresh: bool = False,
        settings: Optional[Settings] = None,
    ) -> FeedSession:
        """Return the seeker's session, rebuilding it when asked or when their skills changed."""
        session = self.sessions.get(seeker.user_id)
        if session is not None and session.pending_transition is not None:
            # Never swap the queue out from under an in-flight write
            return session
        if refresh or not self._is_current(session, seeker):
            cards = logic.build_feed(db, seeker, settings)
            session = self.sessions.start(seeker.user_id, seeker.skills, cards)
        return session

    async def _load_off_loop(self, db: Session, seeker: models.SeekerProfile, settings: Settings) -> FeedSession:
        """Like ``load``, but the feed queries run in a worker thread."""
        session = self.sessions.get(seeker.user_id)
        if self._is_current(session, seeker) or (session is not None and session.pending_transition is not None):
            return session

        loop = asyncio.get_running_loop()
        cards = await loop.run_in_executor(None, logic.build_feed, db, seeker, settings)

        # Another request may have installed a session while the feed was building
        session = self.sessions.get(seeker.user_id)
        if self._is_current(session, seeker) or (session is not None and session.pending_transition is not None):
            return session
        return self.sessions.start(seeker.user_id, seeker.skills, cards)

    async def swipe(
        self,
        db: Session,
        seeker: models.SeekerProfile,
        request: schemas.SwipeRequest,
        settings: Optional[Settings] = None,
    ) -> schemas.SwipeResponse:
        settings = settings or get_settings()
        session = await self._load_off_loop(db, seeker, settings)

        if session.pending_transition is not None:
            logger.info(
                "Swipe ignored, transition in flight",
                seeker_id=seeker.user_id,
                pending_job_id=session.pending_transition.job_id,
            )
            return self._response(session, "ignored", "Still processing your last swipe")

        card = session.current_card
        if card is None:
            return self._response(session, "exhausted", "You've seen all available jobs")

        if request.job_id is not None and request.job_id != card.id:
            logger.info("Swipe ignored, stale card", seeker_id=seeker.user_id, job_id=request.job_id)
            return self._response(session, "ignored", "That card has already been decided", job_id=request.job_id)

        action = resolve_gesture(request, settings.swipe_commit_threshold)
        if action is None:
            return self._response(session, "discarded", job_id=card.id)

        # Set before the first await so a concurrent swipe sees it
        pending = PendingTransition(job_id=card.id, action=action)
        session.pending_transition = pending
        try:
            return await self._commit(seeker, session, pending, settings)
        finally:
            # A timed out write keeps the marker until its thread finishes
            if pending.write is None or pending.write.done():
                session.pending_transition = None

    def _write_decision(self, action: str, job_id: str, seeker_id: str) -> Optional[int]:
        """Runs in a worker thread. Returns the stored match percentage for applications."""
        db = self.session_factory()
        try:
            seeker = crud.get_seeker_profile(db, seeker_id)
            if seeker is None:
                raise NotFoundError("Seeker profile", seeker_id)
            # Looked up on every call, not bound at import
            if action == APPLY:
                return logic.apply_to_job(db, job_id, seeker).skill_match_percentage
            logic.skip_job(db, job_id, seeker)
            return None
        finally:
            db.close()

    @metric_scope
    async def _commit(
        self,
        seeker: models.SeekerProfile,
        session: FeedSession,
        pending: PendingTransition,
        settings: Settings,
        metrics=None,
    ) -> schemas.SwipeResponse:
        metrics.set_namespace("CheerSwipes")
        metrics.set_property("seeker_id", seeker.user_id)
        metrics.set_property("job_id", pending.job_id)

        job_id = pending.job_id
        loop = asyncio.get_running_loop()
        pending.write = loop.run_in_executor(None, self._write_decision, pending.action, job_id, seeker.user_id)
        try:
            # shield keeps the write future alive past the timeout so it can be tracked
            percentage = await asyncio.wait_for(asyncio.shield(pending.write), timeout=settings.swipe_timeout_seconds)
        except ConflictError as exc:
            # The pair is already terminal, so the card can never be decided here
            session.cursor += 1
            metrics.put_metric("swipe_conflict", 1, "Count")
            logger.info("Swipe conflict", seeker_id=seeker.user_id, job_id=job_id, reason=exc.code)
            return self._response(session, "conflict", exc.message, job_id=job_id)
        except NotFoundError:
            session.cursor += 1
            metrics.put_metric("swipe_failed", 1, "Count")
            logger.warning("Swiped job no longer exists", seeker_id=seeker.user_id, job_id=job_id)
            return self._response(session, "error", "This job is no longer available", job_id=job_id)
        except asyncio.TimeoutError:
            pending.write.add_done_callback(lambda write: self._settle_late_write(session, pending, write))
            metrics.put_metric("swipe_failed", 1, "Count")
            logger.warning(
                "Swipe write timed out",
                seeker_id=seeker.user_id,
                job_id=job_id,
                timeout=settings.swipe_timeout_seconds,
            )
            return self._response(session, "error", TransientIOError.message, job_id=job_id)
        except SQLAlchemyError as exc:
            metrics.put_metric("swipe_failed", 1, "Count")
            logger.error("Swipe write failed", seeker_id=seeker.user_id, job_id=job_id, exc_info=exc)
            return self._response(session, "error", TransientIOError.message, job_id=job_id)
        except Exception as exc:
            metrics.put_metric("swipe_failed", 1, "Count")
            logger.error("Unexpected swipe failure", seeker_id=seeker.user_id, job_id=job_id, exc_info=exc)
            return self._response(session, "error", CheerError.message, job_id=job_id)

        session.cursor += 1
        if pending.action == APPLY:
            metrics.put_metric("swipe_applied", 1, "Count")
            return self._response(
                session,
                "applied",
                "Application sent!",
                job_id=job_id,
                skill_match_percentage=percentage,
            )
        metrics.put_metric("swipe_skipped", 1, "Count")
        return self._response(session, "skipped", job_id=job_id)

    @staticmethod
    def _settle_late_write(session: FeedSession, pending: PendingTransition, write: asyncio.Future) -> None:
        """Release the session once a timed out write finishes, whatever its result."""
        if session.pending_transition is pending:
            session.pending_transition = None
        if write.cancelled():
            return
        exc = write.exception()
        if exc is None or isinstance(exc, ConflictError):
            # The pair is decided now; move past it if it is still showing
            card = session.current_card
            if card is not None and card.id == pending.job_id:
                session.cursor += 1
            logger.info("Late swipe write settled", seeker_id=session.seeker_id, job_id=pending.job_id)
        else:
            logger.warning(
                "Late swipe write failed",
                seeker_id=session.seeker_id,
                job_id=pending.job_id,
                error=str(exc),
            )

    @staticmethod
    def _response(
        session: FeedSession,
        outcome: str,
        message: Optional[str] = None,
        job_id: Optional[str] = None,
        skill_match_percentage: Optional[int] = None,
    ) -> schemas.SwipeResponse:
        return schemas.SwipeResponse(
            outcome=outcome,
            message=message,
            job_id=job_id,
            skill_match_percentage=skill_match_percentage,
            feed=session.view(),
        )


feed_sessions = FeedSessionManager()
engine = SwipeEngine(feed_sessions)
