import pytest

from interview_coach.engine.errors import IllegalTransitionError, SpeechUnavailableError
from interview_coach.engine.speech import (
	Capability,
	ClientRecognitionBackend,
	RecognitionState,
	SpeechErrorKind,
	SpeechRecognitionAdapter,
	normalize_segment,
)


class Recorder:
	def __init__(self):
		self.interims = []
		self.finals = []
		self.errors = []


def make_adapter(capability=Capability.SUPPORTED, continuous=True):
	backend = ClientRecognitionBackend(capability)
	seen = Recorder()
	adapter = SpeechRecognitionAdapter(
		backend,
		continuous=continuous,
		on_interim=seen.interims.append,
		on_final=seen.finals.append,
		on_error=lambda kind, message: seen.errors.append((kind, message)),
	)
	return adapter, backend, seen


def test_start_opens_one_stream_and_forwards_results():
	adapter, backend, seen = make_adapter()
	adapter.start()
	stream_id = adapter.stream.stream_id

	assert adapter.state == RecognitionState.LISTENING
	assert backend.deliver(stream_id, "interim", text="hello wor")
	assert backend.deliver(stream_id, "final", text="  hello   world ")
	assert seen.interims == ["hello wor"]
	assert seen.finals == ["hello world"]


def test_start_while_listening_keeps_the_same_stream():
	adapter, _, _ = make_adapter()
	adapter.start()
	stream = adapter.stream
	adapter.start()
	assert adapter.stream is stream


def test_results_after_stop_are_dropped():
	adapter, backend, seen = make_adapter()
	adapter.start()
	stream_id = adapter.stream.stream_id
	adapter.stop()

	assert adapter.state == RecognitionState.STOPPING
	backend.deliver(stream_id, "interim", text="late")
	backend.deliver(stream_id, "final", text="late final")
	backend.deliver(stream_id, "end")

	assert seen.interims == []
	assert seen.finals == []
	assert adapter.state == RecognitionState.IDLE
	assert adapter.stream is None


def test_events_from_a_disposed_stream_are_ignored():
	adapter, backend, seen = make_adapter()
	adapter.start()
	old_id = adapter.stream.stream_id
	adapter.dispose()
	adapter.start()

	assert adapter.stream.stream_id != old_id
	assert backend.deliver(old_id, "final", text="stale words") is False
	assert seen.finals == []


def test_start_while_stopping_replaces_the_old_stream():
	adapter, backend, seen = make_adapter()
	adapter.start()
	old_id = adapter.stream.stream_id
	adapter.stop()

	adapter.start()

	assert adapter.state == RecognitionState.LISTENING
	assert adapter.stream.stream_id != old_id
	assert backend.deliver(old_id, "end") is False
	assert backend.deliver(adapter.stream.stream_id, "final", text="fresh words")
	assert seen.finals == ["fresh words"]
	assert adapter.state == RecognitionState.LISTENING


def test_platform_end_while_listening_restarts_when_continuous():
	adapter, backend, _ = make_adapter(continuous=True)
	adapter.start()
	first_id = adapter.stream.stream_id

	backend.deliver(first_id, "end")

	assert adapter.state == RecognitionState.LISTENING
	assert adapter.stream.stream_id != first_id


def test_platform_end_while_listening_goes_idle_when_not_continuous():
	adapter, backend, _ = make_adapter(continuous=False)
	adapter.start()
	backend.deliver(adapter.stream.stream_id, "end")
	assert adapter.state == RecognitionState.IDLE


def test_permission_denied_moves_to_error_until_permission_granted():
	adapter, backend, seen = make_adapter()
	adapter.start()
	backend.deliver(adapter.stream.stream_id, "error", kind="not-allowed")

	assert adapter.state == RecognitionState.ERROR
	assert adapter.capability == Capability.PERMISSION_DENIED
	assert seen.errors[0][0] == SpeechErrorKind.NOT_ALLOWED
	with pytest.raises(SpeechUnavailableError):
		adapter.start()

	assert adapter.request_permission() == Capability.SUPPORTED
	assert adapter.state == RecognitionState.IDLE
	adapter.start()
	assert adapter.listening


def test_no_speech_returns_to_idle():
	adapter, backend, seen = make_adapter()
	adapter.start()
	backend.deliver(adapter.stream.stream_id, "error", kind="no-speech")

	assert adapter.state == RecognitionState.IDLE
	assert seen.errors == [(SpeechErrorKind.NO_SPEECH, "No speech detected. Please try speaking again.")]


def test_aborted_is_silent():
	adapter, backend, seen = make_adapter()
	adapter.start()
	backend.deliver(adapter.stream.stream_id, "error", kind="aborted")

	assert seen.errors == []
	assert adapter.listening


def test_unsupported_device_cannot_start():
	adapter, _, _ = make_adapter(Capability.UNSUPPORTED)
	with pytest.raises(SpeechUnavailableError):
		adapter.start()
	assert adapter.state == RecognitionState.IDLE


def test_capability_is_probed_once():
	adapter, backend, _ = make_adapter()
	backend.capability = Capability.UNSUPPORTED
	assert adapter.capability == Capability.SUPPORTED


def test_illegal_transition_raises():
	adapter, _, _ = make_adapter()
	with pytest.raises(IllegalTransitionError):
		adapter._transition(RecognitionState.STOPPING)


def test_unknown_event_is_rejected():
	adapter, backend, _ = make_adapter()
	adapter.start()
	with pytest.raises(ValueError):
		backend.deliver(adapter.stream.stream_id, "volume")


@pytest.mark.parametrize(
	"code,kind",
	[
		("no-speech", SpeechErrorKind.NO_SPEECH),
		("not-allowed", SpeechErrorKind.NOT_ALLOWED),
		("service-not-allowed", SpeechErrorKind.NOT_ALLOWED),
		("audio-capture", SpeechErrorKind.NOT_ALLOWED),
		("aborted", SpeechErrorKind.ABORTED),
		("network", SpeechErrorKind.NETWORK),
		("language-not-supported", SpeechErrorKind.NETWORK),
	],
)
def test_platform_error_codes(code, kind):
	assert SpeechErrorKind.from_platform(code) == kind


def test_normalize_segment():
	assert normalize_segment("  so\tI  decided \n to ") == "so I decided to"
	assert normalize_segment("") == ""
