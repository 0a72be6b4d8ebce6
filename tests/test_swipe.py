import asyncio
import time

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import crud
import logic
import models
import schemas
from settings import Settings
from swipe import FeedSessionManager, SwipeEngine, resolve_gesture

SETTINGS = Settings(swipe_timeout_seconds=5)


@pytest.fixture
def swipe_engine():
    return SwipeEngine(FeedSessionManager())


def _records(db: Session, seeker_id: str):
    db.expire_all()
    applications = db.query(models.Application).filter(models.Application.seeker_id == seeker_id).all()
    skipped = db.query(models.SkippedJob).filter(models.SkippedJob.seeker_id == seeker_id).all()
    return applications, skipped


def test_resolve_gesture_thresholds():
    assert resolve_gesture(schemas.SwipeRequest(direction="right"), 100) == "apply"
    assert resolve_gesture(schemas.SwipeRequest(direction="left"), 100) == "skip"
    assert resolve_gesture(schemas.SwipeRequest(drag_offset=150), 100) == "apply"
    assert resolve_gesture(schemas.SwipeRequest(drag_offset=-101), 100) == "skip"
    assert resolve_gesture(schemas.SwipeRequest(drag_offset=100), 100) is None
    assert resolve_gesture(schemas.SwipeRequest(drag_offset=-40), 100) is None


def test_swipe_request_needs_exactly_one_gesture():
    with pytest.raises(ValueError):
        schemas.SwipeRequest()
    with pytest.raises(ValueError):
        schemas.SwipeRequest(direction="left", drag_offset=200)


@pytest.mark.asyncio
async def test_apply_records_point_in_time_score_and_advances(db_session: Session, factory, swipe_engine):
    # 1. Arrange
    seeker = factory.seeker(skills=["Go", "SQL"])
    job = factory.job(required_skills=["Go", "SQL", "Docker"])
    session = swipe_engine.load(db_session, seeker, settings=SETTINGS)
    assert session.current_card.match_percentage == 67

    # 2. Act
    response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="right", job_id=job.id), SETTINGS)

    # 3. Assert
    assert response.outcome == "applied"
    assert response.skill_match_percentage == 67
    assert session.cursor == 1
    assert response.feed.status == "empty"

    applications, skipped = _records(db_session, seeker.user_id)
    assert skipped == []
    [application] = applications
    assert application.skill_match_percentage == 67
    assert application.status == "applied"
    assert application.job_snapshot["title"] == job.title

    # Later changes to skills or requirements never rewrite the stored score
    crud.update_seeker_skills(db_session, seeker.user_id, ["Go", "SQL", "Docker"])
    db_session.commit()
    db_session.refresh(application)
    assert application.skill_match_percentage == 67


@pytest.mark.asyncio
async def test_skip_creates_skip_record_without_score(db_session: Session, factory, swipe_engine):
    seeker = factory.seeker(skills=["Go"])
    factory.job(required_skills=["Go"])

    response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="left"), SETTINGS)

    assert response.outcome == "skipped"
    assert response.skill_match_percentage is None
    applications, skipped = _records(db_session, seeker.user_id)
    assert applications == []
    assert len(skipped) == 1


@pytest.mark.asyncio
async def test_short_drag_is_discarded(db_session: Session, factory, swipe_engine):
    seeker = factory.seeker()
    job = factory.job()

    response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(drag_offset=60), SETTINGS)

    assert response.outcome == "discarded"
    assert response.feed.card.id == job.id
    assert swipe_engine.sessions.get(seeker.user_id).cursor == 0
    assert _records(db_session, seeker.user_id) == ([], [])


@pytest.mark.asyncio
async def test_long_drag_commits(db_session: Session, factory, swipe_engine):
    seeker = factory.seeker()
    factory.job()

    response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(drag_offset=-180), SETTINGS)

    assert response.outcome == "skipped"


@pytest.mark.asyncio
async def test_decision_on_already_decided_pair_is_a_conflict(db_session: Session, factory, swipe_engine):
    # 1. Arrange: the feed is loaded, then the job gets applied to elsewhere
    seeker = factory.seeker(skills=["Go"])
    job = factory.job(required_skills=["Go"])
    next_job = factory.job(required_skills=["Go"])
    session = swipe_engine.load(db_session, seeker, settings=SETTINGS)
    first_card = session.current_card.id
    logic.apply_to_job(db_session, first_card, seeker)

    # 2. Act
    response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="right"), SETTINGS)

    # 3. Assert
    assert response.outcome == "conflict"
    assert response.message == "You've already applied to this job"
    applications, _ = _records(db_session, seeker.user_id)
    assert len(applications) == 1
    # The decided card is dropped, the other one is now current
    assert response.feed.card.id in {job.id, next_job.id} - {first_card}


@pytest.mark.asyncio
async def test_skip_after_apply_is_rejected(db_session: Session, factory, swipe_engine):
    seeker = factory.seeker()
    job = factory.job()
    swipe_engine.load(db_session, seeker, settings=SETTINGS)
    logic.apply_to_job(db_session, job.id, seeker)

    response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="left"), SETTINGS)

    assert response.outcome == "conflict"
    applications, skipped = _records(db_session, seeker.user_id)
    assert len(applications) == 1
    assert skipped == []


@pytest.mark.asyncio
async def test_second_swipe_while_pending_is_ignored(db_session: Session, factory, swipe_engine, monkeypatch):
    seeker = factory.seeker()
    factory.job()
    factory.job()
    real_skip = logic.skip_job

    def slow_skip(db, job_id, profile):
        time.sleep(0.2)
        return real_skip(db, job_id, profile)

    monkeypatch.setattr(logic, "skip_job", slow_skip)
    swipe_engine.load(db_session, seeker, settings=SETTINGS)

    first, second = await asyncio.gather(
        swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="left"), SETTINGS),
        swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="left"), SETTINGS),
    )

    assert first.outcome == "skipped"
    assert second.outcome == "ignored"
    assert swipe_engine.sessions.get(seeker.user_id).cursor == 1
    _, skipped = _records(db_session, seeker.user_id)
    assert len(skipped) == 1


@pytest.mark.asyncio
async def test_stale_card_is_ignored(db_session: Session, factory, swipe_engine):
    seeker = factory.seeker()
    job = factory.job()

    response = await swipe_engine.swipe(
        db_session, seeker, schemas.SwipeRequest(direction="right", job_id="not-the-current-card"), SETTINGS
    )

    assert response.outcome == "ignored"
    assert response.feed.card.id == job.id
    assert _records(db_session, seeker.user_id) == ([], [])


@pytest.mark.asyncio
async def test_write_timeout_leaves_cursor_in_place(db_session: Session, factory, swipe_engine, monkeypatch):
    seeker = factory.seeker()
    job = factory.job()

    def stuck_apply(db, job_id, profile):
        time.sleep(0.3)
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(logic, "apply_to_job", stuck_apply)

    response = await swipe_engine.swipe(
        db_session, seeker, schemas.SwipeRequest(direction="right"), Settings(swipe_timeout_seconds=0.05)
    )

    assert response.outcome == "error"
    assert "try again" in response.message
    assert response.feed.card.id == job.id
    session = swipe_engine.sessions.get(seeker.user_id)
    # The thread is still running, so the session stays pending
    assert session.pending_transition is not None

    await asyncio.sleep(0.6)

    assert session.pending_transition is None
    assert session.cursor == 0


@pytest.mark.asyncio
async def test_swipe_during_timed_out_write_is_ignored(db_session: Session, factory, swipe_engine, monkeypatch):
    # 1. Arrange: a write that outlives the timeout, then succeeds
    seeker = factory.seeker(skills=["Go"])
    job = factory.job(required_skills=["Go"])
    factory.job()
    real_apply = logic.apply_to_job
    writes_started = []

    def slow_apply(db, job_id, profile):
        writes_started.append(job_id)
        time.sleep(0.4)
        return real_apply(db, job_id, profile)

    monkeypatch.setattr(logic, "apply_to_job", slow_apply)
    swipe_engine.load(db_session, seeker, settings=SETTINGS)
    short_timeout = Settings(swipe_timeout_seconds=0.05)

    # 2. Act
    first = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="right"), short_timeout)
    second = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="right"), short_timeout)
    await asyncio.sleep(0.8)

    # 3. Assert
    assert first.outcome == "error"
    assert second.outcome == "ignored"
    assert writes_started == [job.id]

    session = swipe_engine.sessions.get(seeker.user_id)
    assert session.pending_transition is None
    # The late write landed, so its card is behind the cursor
    assert session.cursor == 1
    applications, _ = _records(db_session, seeker.user_id)
    assert [a.job_id for a in applications] == [job.id]


@pytest.mark.asyncio
async def test_unexpected_write_failure_is_an_error_outcome(db_session: Session, factory, swipe_engine, monkeypatch):
    seeker = factory.seeker()
    job = factory.job()

    def broken_skip(db, job_id, profile):
        raise ValueError("bad snapshot")

    monkeypatch.setattr(logic, "skip_job", broken_skip)
    response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="left"), SETTINGS)

    assert response.outcome == "error"
    assert response.feed.card.id == job.id
    session = swipe_engine.sessions.get(seeker.user_id)
    assert session.cursor == 0
    assert session.pending_transition is None


@pytest.mark.asyncio
async def test_feed_builds_off_the_event_loop(db_session: Session, factory, swipe_engine, monkeypatch):
    seeker = factory.seeker()
    factory.job()
    real_build = logic.build_feed

    def slow_build(db, profile, settings=None):
        time.sleep(0.3)
        return real_build(db, profile, settings)

    monkeypatch.setattr(logic, "build_feed", slow_build)
    finished = []

    async def heartbeat():
        await asyncio.sleep(0.05)
        finished.append("heartbeat")

    async def first_swipe():
        response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="left"), SETTINGS)
        finished.append("swipe")
        return response

    response, _ = await asyncio.gather(first_swipe(), heartbeat())

    assert response.outcome == "skipped"
    assert finished == ["heartbeat", "swipe"]


@pytest.mark.asyncio
async def test_concurrent_first_swipes_share_one_session(db_session: Session, factory, swipe_engine, monkeypatch):
    seeker = factory.seeker()
    factory.job()
    factory.job()
    real_build = logic.build_feed

    def slow_build(db, profile, settings=None):
        time.sleep(0.1)
        return real_build(db, profile, settings)

    monkeypatch.setattr(logic, "build_feed", slow_build)
    # Separate DB sessions, as two HTTP requests would have
    other_db = Session(bind=db_session.get_bind())
    other_seeker = crud.get_seeker_profile(other_db, seeker.user_id)
    try:
        first, second = await asyncio.gather(
            swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="left"), SETTINGS),
            swipe_engine.swipe(other_db, other_seeker, schemas.SwipeRequest(direction="left"), SETTINGS),
        )
    finally:
        other_db.close()

    assert sorted([first.outcome, second.outcome]) == ["ignored", "skipped"]
    assert swipe_engine.sessions.get(seeker.user_id).cursor == 1
    _, skipped = _records(db_session, seeker.user_id)
    assert len(skipped) == 1


@pytest.mark.asyncio
async def test_store_failure_is_recoverable(db_session: Session, factory, swipe_engine, monkeypatch):
    seeker = factory.seeker()
    job = factory.job()

    def broken_skip(db, job_id, profile):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(logic, "skip_job", broken_skip)
    failed = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="left"), SETTINGS)
    monkeypatch.undo()
    retried = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="left"), SETTINGS)

    assert failed.outcome == "error"
    assert failed.feed.card.id == job.id
    assert retried.outcome == "skipped"


@pytest.mark.asyncio
async def test_exhausted_feed(db_session: Session, factory, swipe_engine):
    seeker = factory.seeker()

    response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction="right"), SETTINGS)

    assert response.outcome == "exhausted"
    assert response.feed.status == "empty"
    assert response.feed.total == 0


@pytest.mark.asyncio
async def test_skill_change_rebuilds_session(db_session: Session, factory, swipe_engine):
    seeker = factory.seeker(skills=["Go"])
    factory.job(required_skills=["Go", "Rust"])
    before = swipe_engine.load(db_session, seeker, settings=SETTINGS)
    assert before.current_card.match_percentage == 50

    crud.update_seeker_skills(db_session, seeker.user_id, ["Go", "Rust"])
    db_session.commit()
    after = swipe_engine.load(db_session, seeker, settings=SETTINGS)

    assert after is not before
    assert after.current_card.match_percentage == 100


@pytest.mark.asyncio
async def test_walking_the_whole_feed(db_session: Session, factory, swipe_engine):
    seeker = factory.seeker()
    for _ in range(3):
        factory.job()

    outcomes = []
    for direction in ("right", "left", "right"):
        response = await swipe_engine.swipe(db_session, seeker, schemas.SwipeRequest(direction=direction), SETTINGS)
        outcomes.append(response.outcome)

    assert outcomes == ["applied", "skipped", "applied"]
    assert response.feed.status == "empty"
    assert response.feed.position == 3
    applications, skipped = _records(db_session, seeker.user_id)
    assert len(applications) == 2
    assert len(skipped) == 1
    assert logic.build_feed(db_session, seeker) == []
