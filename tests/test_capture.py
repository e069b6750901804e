import pytest

from conftest import FakeClock
from interview_coach.engine.capture import HIDDEN, PAUSED, AnswerCapture, ElapsedTimer
from interview_coach.engine.drafts import DraftPersistence, MemoryDraftStore, draft_key
from interview_coach.engine.errors import AnswerValidationError, IllegalTransitionError
from interview_coach.engine.schemas import SKIPPED_ANSWER, InputMethod
from interview_coach.engine.speech import ClientRecognitionBackend


def make_capture(max_length=2000, **kwargs):
	clock = FakeClock()
	backend = ClientRecognitionBackend()
	store = MemoryDraftStore()
	submitted = []

	async def submit(payload):
		submitted.append(payload)
		return payload

	capture = AnswerCapture(
		"session-1",
		speech_backend=backend,
		drafts=DraftPersistence(store, "session-1", interval=0),
		submit_handler=submit,
		max_length=max_length,
		clock=clock,
		**kwargs,
	)
	return capture, backend, store, clock, submitted


def test_timer_only_runs_without_pause_reasons():
	clock = FakeClock()
	timer = ElapsedTimer(clock)
	timer.start()
	clock.advance(3)
	timer.pause(PAUSED)
	timer.pause(HIDDEN)
	clock.advance(50)
	timer.resume(PAUSED)
	clock.advance(50)
	assert not timer.running
	timer.resume(HIDDEN)
	clock.advance(2)

	assert timer.seconds == 5


def test_timer_stop_freezes_elapsed():
	clock = FakeClock()
	timer = ElapsedTimer(clock)
	timer.start()
	clock.advance(4.7)
	timer.stop()
	clock.advance(10)
	assert timer.seconds == 4


def test_typing_requires_a_question():
	capture, *_ = make_capture()
	with pytest.raises(IllegalTransitionError):
		capture.set_text("hello")


def test_final_segment_over_limit_is_rejected_with_notice():
	capture, backend, *_ = make_capture(max_length=20)
	capture.begin_question("What is your greatest strength?")
	capture.start_capture()
	stream_id = capture.speech.stream.stream_id

	backend.deliver(stream_id, "final", text="I am very")
	backend.deliver(stream_id, "final", text="persistent and patient")

	assert capture.buffer.committed_text == "I am very"
	assert "20 characters" in capture.notice


def test_new_question_discards_old_stream_and_buffer():
	capture, backend, *_ = make_capture()
	capture.begin_question("First question here?")
	capture.start_capture()
	old_id = capture.speech.stream.stream_id
	backend.deliver(old_id, "final", text="first answer")

	capture.begin_question("Second question here?")
	backend.deliver(old_id, "final", text="leaked words")

	assert capture.buffer.is_empty()
	assert not capture.capturing


def test_skip_is_not_an_input_mode():
	capture, *_ = make_capture()
	with pytest.raises(AnswerValidationError):
		capture.set_input_mode(InputMethod.SKIP)


def test_switching_to_text_stops_capture():
	capture, *_ = make_capture()
	capture.begin_question("Describe a conflict you resolved?")
	capture.start_capture()
	assert capture.input_mode == InputMethod.VOICE

	capture.set_input_mode(InputMethod.TEXT)

	assert not capture.capturing
	assert capture.input_mode == InputMethod.TEXT


def test_recording_restarts_right_after_stop():
	capture, backend, *_ = make_capture()
	capture.begin_question("Describe a conflict you resolved?")
	capture.start_capture()
	capture.stop_capture()

	capture.start_capture()
	backend.deliver(capture.speech.stream.stream_id, "final", text="We talked it through")

	assert capture.capturing
	assert capture.buffer.committed_text == "We talked it through"


def test_hidden_tab_stops_capture_and_timer():
	capture, _, _, clock, _ = make_capture()
	capture.begin_question("Describe a conflict you resolved?")
	capture.start_capture()
	clock.advance(5)
	capture.on_hidden()
	clock.advance(60)
	capture.on_visible()
	clock.advance(1)

	assert not capture.capturing
	assert capture.timer.seconds == 6


async def test_submit_freezes_trimmed_text():
	capture, _, _, clock, submitted = make_capture()
	capture.begin_question("Why this company?")
	capture.set_text("  Because of the mission.  ")
	clock.advance(12)

	payload = await capture.submit()

	assert payload.text == "Because of the mission."
	assert payload.time_spent_seconds == 12
	assert payload.input_method == InputMethod.TEXT
	assert submitted == [payload]
	assert capture.buffer.committed_text == "  Because of the mission.  "


def test_freeze_skip_uses_placeholder():
	capture, *_ = make_capture()
	payload = capture.freeze_skip()
	assert payload.text == SKIPPED_ANSWER
	assert payload.input_method == InputMethod.SKIP


def test_mark_committed_clears_draft_and_buffer():
	capture, _, store, *_ = make_capture()
	capture.begin_question("Why this company?")
	capture.set_text("draft")
	capture.save_draft()
	assert draft_key("session-1") in store

	capture.mark_committed()

	assert draft_key("session-1") not in store
	assert capture.buffer.is_empty()
	assert capture.question_text is None
