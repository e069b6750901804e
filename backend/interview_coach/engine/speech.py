"""
Speech Recognition Adapter
==========================

Wraps a platform speech-to-text stream behind a small finite state machine.

States: Idle -> Listening -> Stopping -> Idle, with Error reachable from
Listening/Stopping. Commands that would make an illegal transition raise
``IllegalTransitionError``; platform callbacks that arrive in a state where
they make no sense (a late interim result after stop, events from a disposed
stream) are dropped.

Exactly one stream is live per adapter. Starting a new one first stops and
detaches the previous stream, so a late callback from the old stream can
never reach the buffer.

Device capability is resolved once at construction into ``Capability`` and
only re-resolved through an explicit ``request_permission()``.
"""

from __future__ import annotations

import enum
import logging
import re
from typing import Callable, Dict, Optional, Protocol, Set

from .errors import IllegalTransitionError, SpeechUnavailableError


logger = logging.getLogger(__name__)


class Capability(str, enum.Enum):
	SUPPORTED = "supported"
	UNSUPPORTED = "unsupported"
	PERMISSION_DENIED = "permission_denied"


class RecognitionState(str, enum.Enum):
	IDLE = "idle"
	LISTENING = "listening"
	STOPPING = "stopping"
	ERROR = "error"


class SpeechErrorKind(str, enum.Enum):
	NO_SPEECH = "no-speech"
	NOT_ALLOWED = "not-allowed"
	NETWORK = "network"
	ABORTED = "aborted"

	@classmethod
	def from_platform(cls, code: str) -> "SpeechErrorKind":
		"""Map a browser ``SpeechRecognitionErrorEvent.error`` code onto our taxonomy."""
		code = (code or "").strip().lower()
		if code in ("no-speech", "no_speech"):
			return cls.NO_SPEECH
		if code in ("not-allowed", "not_allowed", "service-not-allowed", "audio-capture"):
			return cls.NOT_ALLOWED
		if code == "aborted":
			return cls.ABORTED
		# network, language-not-supported, bad-grammar and anything unknown: degrade to typing
		return cls.NETWORK


ERROR_MESSAGES: Dict[SpeechErrorKind, str] = {
	SpeechErrorKind.NO_SPEECH: "No speech detected. Please try speaking again.",
	SpeechErrorKind.NOT_ALLOWED: "Microphone access denied. Allow microphone access or type your answer instead.",
	SpeechErrorKind.NETWORK: "Speech recognition lost its connection. You can keep answering by typing.",
}

_TRANSITIONS: Dict[RecognitionState, Set[RecognitionState]] = {
	RecognitionState.IDLE: {RecognitionState.LISTENING},
	RecognitionState.LISTENING: {RecognitionState.STOPPING, RecognitionState.IDLE, RecognitionState.ERROR},
	RecognitionState.STOPPING: {RecognitionState.IDLE, RecognitionState.ERROR},
	RecognitionState.ERROR: {RecognitionState.IDLE, RecognitionState.LISTENING},
}


class RecognitionListener(Protocol):
	def on_interim_result(self, text: str) -> None: ...
	def on_final_result(self, text: str) -> None: ...
	def on_error(self, kind: SpeechErrorKind) -> None: ...
	def on_end(self) -> None: ...


class RecognitionStream(Protocol):
	def start(self) -> None: ...
	def stop(self) -> None: ...
	def abort(self) -> None: ...


class RecognitionBackend(Protocol):
	def probe(self) -> Capability: ...
	def open(self, listener: RecognitionListener) -> RecognitionStream: ...


def normalize_segment(text: str) -> str:
	return re.sub(r"\s+", " ", text or "").strip()


class _StreamListener:
	"""Forwards platform callbacks for one stream, tagged with that stream."""

	def __init__(self, adapter: "SpeechRecognitionAdapter") -> None:
		self._adapter = adapter
		self.stream: Optional[RecognitionStream] = None

	def on_interim_result(self, text: str) -> None:
		self._adapter._handle_interim(self.stream, text)

	def on_final_result(self, text: str) -> None:
		self._adapter._handle_final(self.stream, text)

	def on_error(self, kind: SpeechErrorKind) -> None:
		self._adapter._handle_error(self.stream, kind)

	def on_end(self) -> None:
		self._adapter._handle_end(self.stream)


class SpeechRecognitionAdapter:
	def __init__(
		self,
		backend: RecognitionBackend,
		*,
		continuous: bool = True,
		on_interim: Optional[Callable[[str], None]] = None,
		on_final: Optional[Callable[[str], None]] = None,
		on_error: Optional[Callable[[SpeechErrorKind, str], None]] = None,
	) -> None:
		self.backend = backend
		self.continuous = continuous
		self.capability: Capability = backend.probe()
		self.state: RecognitionState = RecognitionState.IDLE
		self.last_error: Optional[SpeechErrorKind] = None
		self._stream: Optional[RecognitionStream] = None
		self._on_interim = on_interim
		self._on_final = on_final
		self._on_error = on_error

	@property
	def listening(self) -> bool:
		return self.state == RecognitionState.LISTENING

	@property
	def stream(self) -> Optional[RecognitionStream]:
		return self._stream

	def _transition(self, target: RecognitionState) -> None:
		if target not in _TRANSITIONS[self.state]:
			raise IllegalTransitionError(f"Speech recognition cannot go from {self.state.value} to {target.value}")
		logger.debug("speech %s -> %s", self.state.value, target.value)
		self.state = target

	def start(self) -> None:
		if self.capability != Capability.SUPPORTED:
			raise SpeechUnavailableError(
				"Speech input is not available. Type your answer instead."
				if self.capability == Capability.UNSUPPORTED
				else ERROR_MESSAGES[SpeechErrorKind.NOT_ALLOWED]
			)
		if self.state == RecognitionState.LISTENING:
			return
		if self.state == RecognitionState.STOPPING:
			# the previous stream never reported its end
			self.dispose()
		self._transition(RecognitionState.LISTENING)
		self.last_error = None
		self._open_stream()

	def stop(self) -> None:
		"""Stop listening; results still in flight from the platform are discarded."""
		if self.state != RecognitionState.LISTENING:
			return
		self._transition(RecognitionState.STOPPING)
		if self._stream is not None:
			self._stream.stop()

	def dispose(self) -> None:
		"""Abort and detach the live stream (question change, unmount)."""
		self._detach()
		if self.state in (RecognitionState.LISTENING, RecognitionState.STOPPING):
			self._transition(RecognitionState.IDLE)

	def request_permission(self) -> Capability:
		"""Re-probe the device after the candidate went through the permission flow."""
		self.capability = self.backend.probe()
		if self.capability == Capability.SUPPORTED and self.state == RecognitionState.ERROR:
			self._transition(RecognitionState.IDLE)
			self.last_error = None
		return self.capability

	def _open_stream(self) -> None:
		# Never two live streams: the old one is stopped and detached first
		self._detach()
		listener = _StreamListener(self)
		stream = self.backend.open(listener)
		listener.stream = stream
		self._stream = stream
		stream.start()

	def _detach(self) -> None:
		stream, self._stream = self._stream, None
		if stream is not None:
			try:
				stream.abort()
			except Exception:
				logger.exception("failed to abort recognition stream")

	def _is_current(self, stream: Optional[RecognitionStream]) -> bool:
		return stream is not None and stream is self._stream

	def _handle_interim(self, stream: Optional[RecognitionStream], text: str) -> None:
		if not self._is_current(stream) or self.state != RecognitionState.LISTENING:
			logger.debug("dropping interim result in state %s", self.state.value)
			return
		if self._on_interim is not None:
			self._on_interim(text)

	def _handle_final(self, stream: Optional[RecognitionStream], text: str) -> None:
		if not self._is_current(stream) or self.state != RecognitionState.LISTENING:
			logger.debug("dropping final result in state %s", self.state.value)
			return
		segment = normalize_segment(text)
		if segment and self._on_final is not None:
			self._on_final(segment)

	def _handle_error(self, stream: Optional[RecognitionStream], kind: SpeechErrorKind) -> None:
		if not self._is_current(stream):
			return
		if kind == SpeechErrorKind.ABORTED:
			# user-initiated stop; the end callback finishes the transition
			return
		self.last_error = kind
		logger.info("speech recognition error: %s", kind.value)
		self._detach()
		if kind == SpeechErrorKind.NO_SPEECH:
			self._transition(RecognitionState.IDLE)
		else:
			if kind == SpeechErrorKind.NOT_ALLOWED:
				self.capability = Capability.PERMISSION_DENIED
			self._transition(RecognitionState.ERROR)
		if self._on_error is not None:
			self._on_error(kind, ERROR_MESSAGES[kind])

	def _handle_end(self, stream: Optional[RecognitionStream]) -> None:
		if not self._is_current(stream):
			return
		if self.state == RecognitionState.LISTENING and self.continuous:
			logger.debug("recognition stream ended while listening; reopening")
			self._open_stream()
			return
		self._stream = None
		self._transition(RecognitionState.IDLE)


# ============================================================================
# CLIENT BRIDGE
# ============================================================================

class ClientStream:
	"""A recognition stream run by the browser and driven over HTTP."""

	def __init__(self, backend: "ClientRecognitionBackend", stream_id: int, listener: RecognitionListener) -> None:
		self.backend = backend
		self.stream_id = stream_id
		self.listener = listener
		self.active = False

	def start(self) -> None:
		self.active = True

	def stop(self) -> None:
		self.active = False

	def abort(self) -> None:
		self.active = False
		self.backend._forget(self.stream_id)


class ClientRecognitionBackend:
	"""
	Backend for recognition running in the candidate's browser.

	The browser reports its capability once, then polls the session snapshot
	for the live ``stream_id``; it runs the recognizer while that stream is
	active and posts every interim/final/error/end event tagged with it.
	Events for streams that have been detached are ignored.
	"""

	def __init__(self, capability: Capability = Capability.SUPPORTED) -> None:
		self.capability = capability
		self._streams: Dict[int, ClientStream] = {}
		self._next_id = 1

	def probe(self) -> Capability:
		return self.capability

	def open(self, listener: RecognitionListener) -> ClientStream:
		stream = ClientStream(self, self._next_id, listener)
		self._next_id += 1
		self._streams[stream.stream_id] = stream
		return stream

	def _forget(self, stream_id: int) -> None:
		self._streams.pop(stream_id, None)

	def deliver(self, stream_id: int, event: str, *, text: str = "", kind: Optional[str] = None) -> bool:
		stream = self._streams.get(stream_id)
		if stream is None:
			logger.debug("ignoring %s event for detached stream %s", event, stream_id)
			return False
		if event == "interim":
			stream.listener.on_interim_result(text)
		elif event == "final":
			stream.listener.on_final_result(text)
		elif event == "error":
			stream.listener.on_error(SpeechErrorKind.from_platform(kind or ""))
		elif event == "end":
			stream.listener.on_end()
			self._forget(stream_id)
		else:
			raise ValueError(f"Unknown speech event: {event}")
		return True
