from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from conftest import make_session
from interview_coach.cleanup import purge_stale
from interview_coach.db import Base
from interview_coach.engine.errors import RecorderError, StoreNotFound
from interview_coach.engine.schemas import InputMethod, SaveRequest, SessionStatus
from interview_coach.engine.stores import SqlDraftStore, SqlInteractionRecorder, SqlSessionStore
from interview_coach.models import DraftRow, InteractionRow, InterviewSessionRow


def save_request(n, submission_id=None, session_id="session-1"):
	return SaveRequest(
		session_id=session_id,
		question_text=f"Question {n}?",
		answer_text=f"Answer {n}",
		timestamp=datetime.now(timezone.utc),
		input_method=InputMethod.TEXT,
		time_spent_seconds=n,
		submission_id=submission_id or f"sub-{n}",
	)


async def test_session_create_get_update(session_factory):
	store = SqlSessionStore(session_factory)
	created = await store.create(make_session(industry="Fintech"))
	assert created.status == SessionStatus.NOT_STARTED
	assert created.industry == "Fintech"

	updated = await store.update(
		"session-1",
		status=SessionStatus.ACTIVE,
		started_at=datetime.now(timezone.utc),
		current_question="Why fintech?",
	)

	assert updated.status == SessionStatus.ACTIVE
	assert updated.started_at is not None
	fetched = await store.get("session-1")
	assert fetched.current_question == "Why fintech?"


async def test_session_store_errors(session_factory):
	store = SqlSessionStore(session_factory)
	with pytest.raises(StoreNotFound):
		await store.get("nope")
	with pytest.raises(StoreNotFound):
		await store.update("nope", status=SessionStatus.ACTIVE)
	await store.create(make_session())
	with pytest.raises(ValueError):
		await store.update("session-1", role="Astronaut")


async def test_list_for_user(session_factory):
	store = SqlSessionStore(session_factory)
	await store.create(make_session(id="a"))
	await store.create(make_session(id="b"))
	await store.create(make_session(id="c", user_id="user-2"))

	sessions = await store.list_for_user("user-1")

	assert {s.id for s in sessions} == {"a", "b"}


async def test_recorder_assigns_contiguous_orders(session_factory):
	await SqlSessionStore(session_factory).create(make_session())
	recorder = SqlInteractionRecorder(session_factory)
	for n in (1, 2, 3):
		await recorder.save(save_request(n))

	listed = await recorder.list("session-1")

	assert [i.order for i in listed] == [1, 2, 3]
	assert [i.answer_text for i in listed] == ["Answer 1", "Answer 2", "Answer 3"]


async def test_recorder_returns_existing_row_for_resubmission(session_factory):
	await SqlSessionStore(session_factory).create(make_session())
	recorder = SqlInteractionRecorder(session_factory)

	first = await recorder.save(save_request(1, submission_id="abc"))
	again = await recorder.save(save_request(1, submission_id="abc"))

	assert again.order == first.order == 1
	assert len(await recorder.list("session-1")) == 1


@pytest.fixture
def file_factory(tmp_path):
	# separate connections, so a second writer can commit between count and insert
	engine = create_engine(f"sqlite:///{tmp_path / 'interviews.db'}")
	Base.metadata.create_all(bind=engine)
	yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
	engine.dispose()


def racing_factory(factory, submission_id):
	"""Sessions that let another writer take the next slot just before they commit."""

	def insert_competitor(db):
		with factory() as other:
			other.add(InteractionRow(
				session_id="session-1",
				order=1,
				submission_id=submission_id,
				question_text="Question 1?",
				answer_text="Answer from the other tab",
				input_method="text",
				time_spent_seconds=3,
				timestamp=datetime.utcnow(),
			))
			other.commit()

	def make():
		db = factory()
		event.listen(db, "before_commit", insert_competitor, once=True)
		return db

	return make


async def test_concurrent_save_for_the_same_slot_is_rejected(file_factory):
	await SqlSessionStore(file_factory).create(make_session())
	recorder = SqlInteractionRecorder(racing_factory(file_factory, "other-tab"))

	with pytest.raises(RecorderError):
		await recorder.save(save_request(1, submission_id="this-tab"))

	listed = await SqlInteractionRecorder(file_factory).list("session-1")
	assert [(i.order, i.submission_id) for i in listed] == [(1, "other-tab")]


async def test_concurrent_save_of_the_same_submission_returns_the_stored_row(file_factory):
	await SqlSessionStore(file_factory).create(make_session())
	recorder = SqlInteractionRecorder(racing_factory(file_factory, "abc"))

	stored = await recorder.save(save_request(1, submission_id="abc"))

	assert stored.order == 1
	assert stored.answer_text == "Answer from the other tab"
	assert len(await SqlInteractionRecorder(file_factory).list("session-1")) == 1


async def test_recorder_requires_session(session_factory):
	with pytest.raises(StoreNotFound):
		await SqlInteractionRecorder(session_factory).save(save_request(1))


def test_draft_store_set_get_delete(session_factory):
	drafts = SqlDraftStore(session_factory)
	drafts.set("draft:s1", "first")
	drafts.set("draft:s1", "second")
	assert drafts.get("draft:s1") == "second"

	drafts.delete("draft:s1")
	drafts.delete("draft:s1")
	assert drafts.get("draft:s1") is None


async def test_purge_stale_keeps_completed_and_recent(session_factory):
	store = SqlSessionStore(session_factory)
	await store.create(make_session(id="old-abandoned", status=SessionStatus.ABANDONED))
	await store.create(make_session(id="old-completed", status=SessionStatus.COMPLETED))
	await store.create(make_session(id="fresh"))
	await SqlInteractionRecorder(session_factory).save(save_request(1, session_id="old-abandoned"))
	old = datetime.utcnow() - timedelta(days=30)
	with session_factory() as db:
		db.query(InterviewSessionRow).filter(
			InterviewSessionRow.id.in_(["old-abandoned", "old-completed"])
		).update({InterviewSessionRow.updated_at: old}, synchronize_session=False)
		db.add(DraftRow(key="draft:old", value="{}", updated_at=old))
		db.add(DraftRow(key="draft:new", value="{}"))
		db.commit()

	with session_factory() as db:
		removed = purge_stale(db, days=7)

	assert removed == 2
	with session_factory() as db:
		assert {r.id for r in db.query(InterviewSessionRow)} == {"old-completed", "fresh"}
		assert [r.key for r in db.query(DraftRow)] == ["draft:new"]
		assert db.query(InteractionRow).count() == 0
