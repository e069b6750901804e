"""
Answer capture: one bounded answer buffer fed by typing and speech.

The capture is bound to one question at a time. ``begin_question`` tears down
whatever belonged to the previous question (recognition stream, autosave
loop, buffer, timer) and restores a matching draft if one was backed up.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .drafts import DraftPersistence
from .errors import AnswerValidationError, IllegalTransitionError, SpeechUnavailableError
from .schemas import SKIPPED_ANSWER, AnswerPayload, InputMethod, TranscriptBuffer
from .speech import Capability, RecognitionBackend, SpeechErrorKind, SpeechRecognitionAdapter


logger = logging.getLogger(__name__)

PAUSED = "paused"
HIDDEN = "hidden"


class ElapsedTimer:
	"""Monotonic stopwatch that only runs while no pause reason is active."""

	def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
		self._clock = clock
		self._accumulated = 0.0
		self._running_since: Optional[float] = None
		self._started = False
		self._reasons: Set[str] = set()

	def start(self) -> None:
		self._accumulated = 0.0
		self._started = True
		self._running_since = None if self._reasons else self._clock()

	def stop(self) -> None:
		self._bank()
		self._started = False

	def pause(self, reason: str) -> None:
		if not self._reasons:
			self._bank()
		self._reasons.add(reason)

	def resume(self, reason: str) -> None:
		self._reasons.discard(reason)
		if not self._reasons and self._started and self._running_since is None:
			self._running_since = self._clock()

	@property
	def running(self) -> bool:
		return self._running_since is not None

	@property
	def elapsed(self) -> float:
		total = self._accumulated
		if self._running_since is not None:
			total += self._clock() - self._running_since
		return total

	@property
	def seconds(self) -> int:
		return int(self.elapsed)

	def _bank(self) -> None:
		if self._running_since is not None:
			self._accumulated += self._clock() - self._running_since
			self._running_since = None


class AnswerCapture:
	def __init__(
		self,
		session_id: str,
		*,
		speech_backend: RecognitionBackend,
		drafts: DraftPersistence,
		submit_handler: Callable[[AnswerPayload], Awaitable[Any]],
		max_length: int = 2000,
		continuous: bool = True,
		auto_start_voice: bool = False,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.session_id = session_id
		self.drafts = drafts
		self.max_length = max_length
		self.auto_start_voice = auto_start_voice
		self.buffer = TranscriptBuffer()
		self.timer = ElapsedTimer(clock)
		self.question_text: Optional[str] = None
		self.input_mode = InputMethod.TEXT
		self.paused = False
		# Set by permission/network speech errors; cleared only by retry_speech()
		self.speech_blocked = False
		self.notice: Optional[str] = None
		self._submit_handler = submit_handler
		self.speech = SpeechRecognitionAdapter(
			speech_backend,
			continuous=continuous,
			on_interim=self._on_interim,
			on_final=self._on_final,
			on_error=self._on_speech_error,
		)

	# ---- question lifecycle ----

	def begin_question(self, question_text: str) -> None:
		self.speech.dispose()
		self.buffer.reset()
		self.notice = None
		self.question_text = question_text
		self.drafts.bind_question(question_text, lambda: self.buffer.committed_text)
		self.restore_draft()
		self.timer.start()
		if (
			self.auto_start_voice
			and not self.paused
			and not self.speech_blocked
			and self.input_mode == InputMethod.VOICE
			and self.speech.capability == Capability.SUPPORTED
		):
			self.speech.start()

	def restore_draft(self) -> bool:
		restored = self.drafts.restore(self.buffer.is_empty())
		if restored is None:
			return False
		self.buffer.committed_text = restored[: self.max_length]
		logger.info("restored draft for session %s", self.session_id)
		return True

	def mark_committed(self) -> None:
		"""The answer for the current question is stored; drop everything tied to it."""
		self.speech.dispose()
		self.drafts.clear()
		self.drafts.unbind()
		self.buffer.reset()
		self.timer.stop()
		self.question_text = None

	# ---- input ----

	@property
	def capturing(self) -> bool:
		return self.speech.listening

	@property
	def has_unsaved_answer(self) -> bool:
		return not self.buffer.is_empty()

	def set_input_mode(self, mode: InputMethod) -> None:
		if mode == InputMethod.SKIP:
			raise AnswerValidationError("Skip is not an input mode")
		if mode == InputMethod.TEXT and self.capturing:
			self.stop_capture()
		self.input_mode = mode

	def set_text(self, text: str) -> None:
		if self.question_text is None:
			raise IllegalTransitionError("There is no question to answer yet.")
		if len(text) > self.max_length:
			raise AnswerValidationError(f"Answers are limited to {self.max_length} characters.")
		self.buffer.committed_text = text

	def start_capture(self) -> None:
		if self.question_text is None:
			raise IllegalTransitionError("There is no question to answer yet.")
		if self.paused:
			raise IllegalTransitionError("Resume the interview before recording.")
		if self.speech_blocked:
			raise SpeechUnavailableError(self.notice or "Speech input is unavailable. Type your answer instead.")
		try:
			self.speech.start()
		except SpeechUnavailableError:
			self.input_mode = InputMethod.TEXT
			raise
		self.input_mode = InputMethod.VOICE
		self.notice = None

	def stop_capture(self) -> None:
		self.speech.stop()
		self.buffer.interim_text = ""

	def retry_speech(self) -> None:
		"""Explicit retry after a permission or network failure."""
		capability = self.speech.request_permission()
		if capability != Capability.SUPPORTED:
			self.input_mode = InputMethod.TEXT
			raise SpeechUnavailableError("Microphone access is still unavailable. Type your answer instead.")
		self.speech_blocked = False
		self.start_capture()

	def clear(self) -> None:
		self.buffer.reset()
		self.drafts.clear()
		self.notice = None

	def save_draft(self) -> bool:
		if self.buffer.is_empty():
			return False
		return self.drafts.save(self.buffer.committed_text)

	# ---- pause / visibility ----

	def pause(self) -> None:
		self.paused = True
		self.stop_capture()
		self.timer.pause(PAUSED)

	def resume(self) -> None:
		self.paused = False
		self.timer.resume(PAUSED)

	def on_hidden(self) -> None:
		if self.capturing:
			logger.info("tab hidden while recording; stopping capture for session %s", self.session_id)
			self.stop_capture()
		self.timer.pause(HIDDEN)

	def on_visible(self) -> None:
		self.timer.resume(HIDDEN)

	# ---- submission ----

	def freeze(self) -> AnswerPayload:
		text = self.buffer.committed_text.strip()
		if not text:
			raise AnswerValidationError("Please enter an answer before submitting.")
		if len(text) > self.max_length:
			raise AnswerValidationError(f"Answers are limited to {self.max_length} characters.")
		return self._payload(text, self.input_mode)

	def freeze_skip(self) -> AnswerPayload:
		return self._payload(SKIPPED_ANSWER, InputMethod.SKIP)

	async def submit(self) -> Any:
		"""Freeze the buffer and hand it to the controller; the buffer survives a failure untouched."""
		payload = self.freeze()
		# stop taking results; the interim text stays until the commit lands
		self.speech.stop()
		return await self._submit_handler(payload)

	def _payload(self, text: str, method: InputMethod) -> AnswerPayload:
		return AnswerPayload(
			text=text,
			time_spent_seconds=self.timer.seconds,
			input_method=method,
			timestamp=datetime.now(timezone.utc),
			submission_id=uuid.uuid4().hex,
		)

	def close(self) -> None:
		self.speech.dispose()
		self.drafts.close()
		self.timer.stop()

	# ---- speech callbacks ----

	def _on_interim(self, text: str) -> None:
		if self.question_text is None:
			return
		self.buffer.interim_text = text

	def _on_final(self, segment: str) -> None:
		if self.question_text is None:
			return
		candidate = self.buffer.with_final(segment)
		if len(candidate) > self.max_length:
			self.notice = f"Answers are limited to {self.max_length} characters."
			logger.info("rejecting speech segment over the answer limit for session %s", self.session_id)
			return
		self.buffer.committed_text = candidate
		self.buffer.interim_text = ""

	def _on_speech_error(self, kind: SpeechErrorKind, message: str) -> None:
		self.notice = message
		self.buffer.interim_text = ""
		if kind in (SpeechErrorKind.NOT_ALLOWED, SpeechErrorKind.NETWORK):
			self.speech_blocked = True
			self.input_mode = InputMethod.TEXT

	def snapshot(self) -> Dict[str, Any]:
		return {
			"committed_text": self.buffer.committed_text,
			"interim_text": self.buffer.interim_text,
			"elapsed_seconds": self.timer.seconds,
			"input_mode": self.input_mode.value,
			"speech_state": self.speech.state.value,
			"speech_capability": self.speech.capability.value,
			"speech_blocked": self.speech_blocked,
			"stream_id": getattr(self.speech.stream, "stream_id", None),
			"notice": self.notice,
		}
