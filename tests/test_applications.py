import pytest
from sqlalchemy import event
from sqlalchemy.orm import Session

import crud
import logic
from errors import ConflictError, InvalidTransitionError, NotFoundError


def test_filter_by_status_with_counts(db_session: Session, factory):
    # 1. Arrange
    seeker = factory.seeker(skills=["Go", "SQL"])
    company = factory.company()
    applied = logic.apply_to_job(db_session, factory.job(company, title="A").id, seeker)
    shortlisted = logic.apply_to_job(db_session, factory.job(company, title="B").id, seeker)
    contacted = logic.apply_to_job(db_session, factory.job(company, title="C").id, seeker)
    crud.advance_application_status(db_session, shortlisted, "shortlisted")
    crud.advance_application_status(db_session, contacted, "contacted")
    db_session.commit()

    # 2. Act
    everything = logic.list_applications(db_session, seeker.user_id)
    only_applied = logic.list_applications(db_session, seeker.user_id, "applied")
    only_contacted = logic.list_applications(db_session, seeker.user_id, "contacted")

    # 3. Assert
    assert everything.counts == {"all": 3, "applied": 1, "shortlisted": 1, "contacted": 1}
    assert only_applied.counts == everything.counts
    assert {a.id for a in everything.applications} == {applied.id, shortlisted.id, contacted.id}
    assert [a.id for a in only_applied.applications] == [applied.id]
    assert [a.id for a in only_contacted.applications] == [contacted.id]


def test_end_to_end_apply_then_filter(db_session: Session, factory):
    seeker = factory.seeker(skills=["Go", "SQL"])
    job = factory.job(required_skills=["Go", "SQL", "Docker"])

    [card] = logic.build_feed(db_session, seeker)
    assert card.match_percentage == 67
    logic.apply_to_job(db_session, job.id, seeker)

    [entry] = logic.list_applications(db_session, seeker.user_id, "applied").applications
    assert entry.skill_match_percentage == 67
    assert entry.status == "applied"
    assert entry.job.title == job.title
    assert logic.list_applications(db_session, seeker.user_id, "contacted").applications == []


def test_inactive_job_still_listed(db_session: Session, factory):
    seeker = factory.seeker()
    company = factory.company(name="Fading Co")
    job = factory.job(company, title="Old role")
    logic.apply_to_job(db_session, job.id, seeker)

    job.is_active = False
    db_session.commit()

    [entry] = logic.list_applications(db_session, seeker.user_id).applications
    assert entry.job_active is False
    assert entry.job.title == "Old role"
    assert entry.job.company_name == "Fading Co"


def test_missing_job_falls_back_to_snapshot(db_session: Session, factory):
    seeker = factory.seeker()
    job = factory.job(title="Snapshot role", required_skills=["Go"])
    application = logic.apply_to_job(db_session, job.id, seeker)

    # Simulate the join coming back empty
    application.job = None
    entry = logic._application_entry(application)

    assert entry.job_active is False
    assert entry.job.id == job.id
    assert entry.job.title == "Snapshot role"
    assert entry.job.required_skills == ["Go"]


def test_status_only_moves_forward(db_session: Session, factory):
    seeker = factory.seeker()
    application = logic.apply_to_job(db_session, factory.job().id, seeker)
    crud.advance_application_status(db_session, application, "shortlisted")

    with pytest.raises(InvalidTransitionError):
        crud.advance_application_status(db_session, application, "applied")

    # Same status is a no-op, skipping ahead is allowed
    crud.advance_application_status(db_session, application, "shortlisted")
    crud.advance_application_status(db_session, application, "contacted")
    assert application.status == "contacted"


def test_duplicate_apply_reports_already_applied(db_session: Session, factory):
    seeker = factory.seeker()
    job = factory.job()
    logic.apply_to_job(db_session, job.id, seeker)

    with pytest.raises(ConflictError) as excinfo:
        logic.apply_to_job(db_session, job.id, seeker)

    assert excinfo.value.code == "already_applied"
    assert len(crud.list_applications(db_session, seeker.user_id)) == 1


def test_apply_to_unknown_job(db_session: Session, factory):
    seeker = factory.seeker()

    with pytest.raises(NotFoundError):
        logic.apply_to_job(db_session, "missing-job", seeker)


def test_apply_racing_a_skip_leaves_one_decision(db_session: Session, factory):
    # 1. Arrange: another session skips the job right before this one flushes its application
    seeker = factory.seeker()
    job = factory.job()
    other_db = Session(bind=db_session.get_bind())
    other_seeker = crud.get_seeker_profile(other_db, seeker.user_id)
    raced = []

    @event.listens_for(db_session, "before_flush")
    def skip_from_other_session(session, flush_context, instances):
        if not raced:
            raced.append(True)
            logic.skip_job(other_db, job.id, other_seeker)

    # 2. Act
    try:
        with pytest.raises(ConflictError) as excinfo:
            logic.apply_to_job(db_session, job.id, seeker)
    finally:
        event.remove(db_session, "before_flush", skip_from_other_session)
        other_db.close()

    # 3. Assert
    assert excinfo.value.code == "already_skipped"
    db_session.expire_all()
    assert crud.list_applied_job_ids(db_session, seeker.user_id) == set()
    assert crud.list_skipped_job_ids(db_session, seeker.user_id) == {job.id}


def test_skip_racing_an_apply_leaves_one_decision(db_session: Session, factory):
    seeker = factory.seeker()
    job = factory.job()
    other_db = Session(bind=db_session.get_bind())
    other_seeker = crud.get_seeker_profile(other_db, seeker.user_id)
    raced = []

    @event.listens_for(db_session, "before_flush")
    def apply_from_other_session(session, flush_context, instances):
        if not raced:
            raced.append(True)
            logic.apply_to_job(other_db, job.id, other_seeker)

    try:
        with pytest.raises(ConflictError) as excinfo:
            logic.skip_job(db_session, job.id, seeker)
    finally:
        event.remove(db_session, "before_flush", apply_from_other_session)
        other_db.close()

    assert excinfo.value.code == "already_applied"
    db_session.expire_all()
    assert crud.list_applied_job_ids(db_session, seeker.user_id) == {job.id}
    assert crud.list_skipped_job_ids(db_session, seeker.user_id) == set()
