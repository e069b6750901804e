import asyncio
import logging

from interview_coach.engine.drafts import DraftPersistence, MemoryDraftStore, draft_key


class BrokenStore(MemoryDraftStore):
	def set(self, key, value):
		raise OSError("quota exceeded")


def test_restore_returns_draft_once():
	store = MemoryDraftStore()
	drafts = DraftPersistence(store, "s1", interval=0)
	drafts.bind_question("Tell me about yourself?", lambda: "")
	assert drafts.save("I grew up in")

	assert drafts.restore(buffer_empty=True) == "I grew up in"
	assert drafts.restore(buffer_empty=True) is None
	assert draft_key("s1") not in store


def test_restore_skipped_when_buffer_has_text():
	store = MemoryDraftStore()
	drafts = DraftPersistence(store, "s1", interval=0)
	drafts.bind_question("Tell me about yourself?", lambda: "")
	drafts.save("something")

	assert drafts.restore(buffer_empty=False) is None
	assert draft_key("s1") in store


def test_draft_for_another_question_is_cleared_on_bind():
	store = MemoryDraftStore()
	drafts = DraftPersistence(store, "s1", interval=0)
	drafts.bind_question("Old question text?", lambda: "")
	drafts.save("old answer")

	drafts.bind_question("New question text?", lambda: "")

	assert draft_key("s1") not in store
	assert drafts.restore(buffer_empty=True) is None


def test_tick_writes_only_non_empty_snapshots():
	store = MemoryDraftStore()
	text = {"value": "  "}
	drafts = DraftPersistence(store, "s1", interval=0)
	drafts.bind_question("Tell me about yourself?", lambda: text["value"])

	assert drafts.tick() is False
	text["value"] = "Hello"
	assert drafts.tick() is True
	assert drafts.load().answer_text == "Hello"


def test_write_failure_is_logged_and_not_raised(caplog):
	drafts = DraftPersistence(BrokenStore(), "s1", interval=0)
	drafts.bind_question("Tell me about yourself?", lambda: "")
	with caplog.at_level(logging.WARNING):
		assert drafts.save("text") is False
	assert "draft write failed" in caplog.text


def test_unreadable_draft_is_discarded():
	store = MemoryDraftStore()
	store.set(draft_key("s1"), "not json")
	drafts = DraftPersistence(store, "s1", interval=0)
	assert drafts.load() is None
	assert draft_key("s1") not in store


async def test_autosave_loop_writes_and_stops_on_unbind():
	store = MemoryDraftStore()
	drafts = DraftPersistence(store, "s1", interval=0.01)
	drafts.bind_question("Tell me about yourself?", lambda: "typed so far")

	await asyncio.sleep(0.05)
	assert drafts.load().answer_text == "typed so far"

	drafts.unbind()
	store.delete(draft_key("s1"))
	await asyncio.sleep(0.05)
	assert draft_key("s1") not in store
