"""
Session Controller
==================

Drives one practice interview end to end and is the only thing that changes
a session's status or progression.

States:
	NotStarted -> Active            start()
	Active <-> Paused               pause() / resume()
	Active, Paused -> Completed     end_interview(), or the last allowed answer
	NotStarted, Active, Paused -> Abandoned
	                                abandon(), after the interruption prompt

Ordering: answers are committed strictly one at a time. While a save (and the
fetch of the following question) is in flight a second submit is rejected,
and a failed save blocks progression until it is retried or discarded.

Stale results: question fetches are tagged with a token. Pausing, ending or
abandoning bumps the token, so a fetch that resolves afterwards is discarded
instead of applied.

All collaborator failures are caught here, logged, turned into an
``EngineError`` and remembered in ``controller.error`` for the client.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Callable, Collection, Dict, List, Optional

from ..settings import settings
from .capture import AnswerCapture
from .drafts import DraftPersistence, DraftStore
from .errors import (
	RETRYABLE,
	AnswerValidationError,
	EngineError,
	FinalizeError,
	IllegalTransitionError,
	InteractionSaveError,
	QuestionFetchError,
	RetryableError,
	SessionAccessError,
	SessionNotFoundError,
	StoreNotFound,
	SubmitInProgressError,
	UserFacingError,
)
from .guard import InterruptionGuard, PageEvents
from .providers import MAX_HISTORY, QuestionProvider
from .schemas import AnswerPayload, HistoryItem, InputMethod, Interaction, QuestionRequest, SaveRequest, Session, SessionStatus
from .scoring import ScoringFinalizer
from .speech import RecognitionBackend
from .stores import InteractionRecorder, SessionStore


logger = logging.getLogger(__name__)

OFFLINE_ACTION = "wait_online"


class SessionController:
	def __init__(
		self,
		session: Session,
		*,
		questions: QuestionProvider,
		recorder: InteractionRecorder,
		store: SessionStore,
		speech_backend: RecognitionBackend,
		draft_store: DraftStore,
		interactions: Optional[List[Interaction]] = None,
		finalizer: Optional[ScoringFinalizer] = None,
		auto_advance: bool = True,
		autosave_interval: Optional[float] = None,
		answer_max_length: Optional[int] = None,
		continuous: Optional[bool] = None,
		auto_start_voice: bool = False,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.session = session
		self.questions = questions
		self.recorder = recorder
		self.store = store
		self.finalizer = finalizer or ScoringFinalizer(store)
		self.auto_advance = auto_advance
		self.interactions: List[Interaction] = list(interactions or [])
		self.current_question: Optional[str] = None
		self.error: Optional[UserFacingError] = None
		self.fetching = False
		self._fetch_token = 0
		self._submitting = False
		self._ending = False
		self._pending: Optional[AnswerPayload] = None
		self._finalized = session.status == SessionStatus.COMPLETED

		drafts = DraftPersistence(
			draft_store,
			session.id,
			interval=settings.autosave_interval_seconds if autosave_interval is None else autosave_interval,
		)
		self.capture = AnswerCapture(
			session.id,
			speech_backend=speech_backend,
			drafts=drafts,
			submit_handler=self.submit_answer,
			max_length=answer_max_length or settings.answer_max_length,
			continuous=settings.speech_continuous if continuous is None else continuous,
			auto_start_voice=auto_start_voice,
			clock=clock,
		)
		self.page_events = PageEvents()
		self.guard = InterruptionGuard(
			self.capture,
			on_offline=self._handle_offline,
			on_online=self._handle_online,
			on_leave_confirmed=self.abandon,
		)
		self.guard.register(self.page_events)

	@classmethod
	async def load(
		cls,
		session_id: str,
		user_id: str,
		*,
		store: SessionStore,
		recorder: InteractionRecorder,
		**kwargs: Any,
	) -> "SessionController":
		"""Load a session for its owner and mount it (resume question, restore draft)."""
		try:
			session = await store.get(session_id)
		except StoreNotFound as err:
			raise SessionNotFoundError("Interview session not found.") from err
		if session.user_id != user_id:
			raise SessionAccessError("You do not have access to this interview session.")
		interactions = await recorder.list(session_id)
		controller = cls(session, store=store, recorder=recorder, interactions=interactions, **kwargs)
		await controller.mount()
		return controller

	# ---- helpers ----

	@property
	def pending_save(self) -> bool:
		return self._pending is not None

	@property
	def question_limit_reached(self) -> bool:
		return len(self.interactions) >= self.session.max_questions

	@property
	def busy(self) -> bool:
		return self._submitting or self._ending or self.fetching

	def _require(self, allowed: Collection[SessionStatus], action: str) -> None:
		if self.session.status not in allowed:
			raise IllegalTransitionError(f"Cannot {action} while the interview is {self.session.status.value}.")

	def _fail(self, error: EngineError, cause: Optional[BaseException] = None) -> None:
		self.error = error.to_user_facing()
		logger.warning("session %s: %s", self.session.id, error.message, exc_info=cause)

	def _lost_session(self) -> SessionNotFoundError:
		error = SessionNotFoundError("This interview session no longer exists.")
		if not self.session.status.terminal:
			self.session.status = SessionStatus.ABANDONED
		self._fetch_token += 1
		self.close()
		self._fail(error)
		return error

	async def _persist(self, **changes: Any) -> Session:
		try:
			return await self.store.update(self.session.id, **changes)
		except StoreNotFound as err:
			raise self._lost_session() from err
		except Exception as err:
			error = RetryableError("Could not reach the server. Please try again.")
			self._fail(error, err)
			raise error from err

	async def _persist_best_effort(self, **changes: Any) -> None:
		try:
			await self._persist(**changes)
		except RetryableError:
			# already logged and surfaced; local state stays authoritative for this tab
			pass

	def _question_request(self) -> QuestionRequest:
		history = [
			HistoryItem(question=i.question_text, answer=i.answer_text)
			for i in self.interactions[-MAX_HISTORY:]
		]
		return QuestionRequest(
			role=self.session.role,
			session_type=self.session.session_type,
			experience_level=self.session.experience_level,
			industry=self.session.industry,
			history=history,
		)

	def _show_question(self, text: str) -> None:
		self.current_question = text
		self.session.current_question = text
		self.capture.begin_question(text)

	# ---- lifecycle ----

	async def mount(self) -> None:
		status = self.session.status
		if status.terminal or status == SessionStatus.NOT_STARTED:
			return
		if self.question_limit_reached:
			try:
				await self._finalize()
			except RetryableError:
				pass
			return
		if self.current_question is None and self.session.current_question:
			self._show_question(self.session.current_question)
			if status == SessionStatus.PAUSED:
				self.capture.pause()
		elif status == SessionStatus.ACTIVE and self.current_question is None:
			await self._fetch_next_question()
		elif status == SessionStatus.PAUSED:
			self.capture.pause()

	async def start(self) -> Optional[str]:
		self._require({SessionStatus.NOT_STARTED}, "start")
		started_at = datetime.now(timezone.utc)
		self.session.status = SessionStatus.ACTIVE
		try:
			await self._persist(status=SessionStatus.ACTIVE, started_at=started_at)
		except RetryableError:
			self.session.status = SessionStatus.NOT_STARTED
			raise
		self.session.started_at = started_at
		logger.info("session %s started (%s, %s)", self.session.id, self.session.role, self.session.session_type)
		return await self._fetch_next_question()

	async def pause(self) -> None:
		self._require({SessionStatus.ACTIVE}, "pause")
		self._fetch_token += 1
		self.fetching = False
		self.session.status = SessionStatus.PAUSED
		self.capture.pause()
		logger.info("session %s paused", self.session.id)
		await self._persist_best_effort(status=SessionStatus.PAUSED)

	async def resume(self) -> Optional[str]:
		self._require({SessionStatus.PAUSED}, "resume")
		self.session.status = SessionStatus.ACTIVE
		self.capture.resume()
		logger.info("session %s resumed", self.session.id)
		await self._persist_best_effort(status=SessionStatus.ACTIVE)
		if (
			self.session.status == SessionStatus.ACTIVE
			and self.current_question is None
			and self._pending is None
			and not self._submitting
			and not self.question_limit_reached
		):
			return await self._fetch_next_question()
		return self.current_question

	async def end_interview(self) -> Session:
		"""Flush an unsaved answer once, then score and close the session. Idempotent."""
		if self.session.status == SessionStatus.COMPLETED or self._ending:
			return self.session
		self._require({SessionStatus.ACTIVE, SessionStatus.PAUSED}, "end the interview")
		if self._submitting:
			raise SubmitInProgressError("Your answer is still being saved.")
		self._ending = True
		try:
			self._fetch_token += 1
			self.fetching = False
			self._submitting = True
			try:
				await self._flush_unsaved()
			finally:
				self._submitting = False
			return await self._finalize()
		finally:
			self._ending = False

	async def abandon(self) -> Session:
		if self.session.status == SessionStatus.ABANDONED:
			return self.session
		if self.session.status == SessionStatus.COMPLETED:
			raise IllegalTransitionError("A completed interview cannot be abandoned.")
		self._fetch_token += 1
		self.fetching = False
		self.session.status = SessionStatus.ABANDONED
		self.capture.drafts.clear()
		self.close()
		logger.info("session %s abandoned", self.session.id)
		await self._persist_best_effort(status=SessionStatus.ABANDONED)
		return self.session

	def close(self) -> None:
		self.capture.close()
		self.guard.unregister()

	# ---- questions ----

	async def next_question(self) -> Optional[str]:
		"""Load the next question: the manual retry after a failed fetch, or the advance when auto-advance is off."""
		self._require({SessionStatus.ACTIVE}, "load a question")
		if self._pending is not None:
			raise IllegalTransitionError("Retry or discard your unsaved answer first.")
		if self.current_question is not None:
			return self.current_question
		if self.question_limit_reached:
			return None
		return await self._fetch_next_question()

	async def _fetch_next_question(self) -> Optional[str]:
		if self.question_limit_reached:
			return None
		self._fetch_token += 1
		token = self._fetch_token
		self.fetching = True
		try:
			text = await self.questions.fetch_next(self._question_request())
		except Exception as err:
			if token != self._fetch_token:
				return None
			self.fetching = False
			self._fail(QuestionFetchError("Failed to load the next question. Please try again."), err)
			return None
		if token != self._fetch_token or self.session.status != SessionStatus.ACTIVE:
			logger.info("discarding question fetched for session %s after it was paused or ended", self.session.id)
			if token == self._fetch_token:
				self.fetching = False
			return None
		self.fetching = False
		self.error = None
		self._show_question(text)
		await self._persist_best_effort(current_question=text)
		return text

	# ---- answers ----

	async def submit_answer(self, payload: AnswerPayload) -> Interaction:
		self._require({SessionStatus.ACTIVE}, "submit an answer")
		if self._ending:
			raise SubmitInProgressError("The interview is being ended.")
		if self._submitting:
			raise SubmitInProgressError("Your previous answer is still being saved.")
		if self.current_question is None:
			raise IllegalTransitionError("There is no question to answer yet.")
		if self.question_limit_reached:
			raise IllegalTransitionError("All questions for this interview have been answered.")
		if self._pending is not None and payload.submission_id != self._pending.submission_id:
			# Same slot as the failed attempt: keep its id so the store can dedupe
			payload = payload.model_copy(update={"submission_id": self._pending.submission_id})
		self._submitting = True
		try:
			interaction = await self._commit(payload)
			await self._advance(payload)
		finally:
			self._submitting = False
		return interaction

	async def skip_question(self) -> Interaction:
		self._require({SessionStatus.ACTIVE}, "skip a question")
		if self._ending or self._submitting:
			raise SubmitInProgressError("Your previous answer is still being saved.")
		if self.current_question is None:
			raise IllegalTransitionError("There is no question to skip.")
		if self._pending is not None:
			raise IllegalTransitionError("Retry or discard your unsaved answer first.")
		return await self.submit_answer(self.capture.freeze_skip())

	async def retry_save(self) -> Interaction:
		if self._pending is None:
			raise IllegalTransitionError("There is no unsaved answer to retry.")
		return await self.submit_answer(self._pending)

	def discard_pending(self) -> None:
		if self._pending is None:
			return
		logger.info("session %s: unsaved answer discarded", self.session.id)
		self._pending = None
		self.capture.clear()
		self.error = None

	async def _commit(self, payload: AnswerPayload) -> Interaction:
		request = SaveRequest(
			session_id=self.session.id,
			question_text=self.current_question,
			answer_text=payload.text,
			timestamp=payload.timestamp,
			input_method=payload.input_method,
			time_spent_seconds=payload.time_spent_seconds,
			submission_id=payload.submission_id,
		)
		try:
			interaction = await self.recorder.save(request)
		except StoreNotFound as err:
			raise self._lost_session() from err
		except Exception as err:
			self._pending = payload
			error = InteractionSaveError("Failed to save your answer. Please try again.")
			self._fail(error, err)
			raise error from err
		self._pending = None
		self.error = None
		await self._record(interaction)
		self.current_question = None
		self.session.current_question = None
		self.capture.mark_committed()
		await self._persist_best_effort(current_question=None)
		return interaction

	async def _record(self, interaction: Interaction) -> None:
		expected = len(self.interactions) + 1
		if interaction.order == expected:
			self.interactions.append(interaction)
			return
		logger.warning(
			"session %s: store assigned order %d, expected %d; reloading interactions",
			self.session.id, interaction.order, expected,
		)
		try:
			self.interactions = await self.recorder.list(self.session.id)
		except Exception:
			logger.warning("session %s: reload of interactions failed", self.session.id, exc_info=True)
			self.interactions.append(interaction)

	async def _advance(self, payload: AnswerPayload) -> None:
		if self.session.status.terminal:
			return
		if self.question_limit_reached:
			try:
				await self._finalize()
			except RetryableError:
				# the answer is stored; the failure is in self.error with a retry_end action
				pass
			return
		if self.session.status != SessionStatus.ACTIVE:
			return
		if self.auto_advance or payload.input_method == InputMethod.SKIP:
			await self._fetch_next_question()

	async def _flush_unsaved(self) -> None:
		if self.current_question is None or self.question_limit_reached:
			return
		payload = self._pending
		if payload is None:
			if not self.capture.has_unsaved_answer:
				return
			try:
				payload = self.capture.freeze()
			except AnswerValidationError:
				logger.info("session %s: unsaved answer is not submittable; ending without it", self.session.id)
				return
		try:
			await self._commit(payload)
		except InteractionSaveError:
			logger.warning("session %s: could not flush the unsaved answer; ending without it", self.session.id)
			self._pending = None

	async def _finalize(self) -> Session:
		if self._finalized:
			return self.session
		if self.session.status == SessionStatus.ABANDONED:
			raise IllegalTransitionError("An abandoned interview cannot be completed.")
		try:
			updated = await self.finalizer.finalize(self.session, self.interactions)
		except StoreNotFound as err:
			raise self._lost_session() from err
		except IllegalTransitionError:
			raise
		except Exception as err:
			error = FinalizeError("Failed to end the interview. Please try again.")
			self._fail(error, err)
			raise error from err
		self._finalized = True
		self.session = updated
		self.current_question = None
		self.error = None
		self.close()
		return updated

	# ---- connectivity ----

	def _handle_offline(self) -> None:
		self.error = UserFacingError(
			kind=RETRYABLE,
			message="You are offline. You can keep answering; saving resumes when you reconnect.",
			action=OFFLINE_ACTION,
		)

	def _handle_online(self) -> None:
		if self.error is not None and self.error.action == OFFLINE_ACTION:
			self.error = None

	def snapshot(self) -> Dict[str, Any]:
		return {
			"session_id": self.session.id,
			"status": self.session.status.value,
			"role": self.session.role,
			"session_type": self.session.session_type,
			"current_question": self.current_question,
			"question_number": len(self.interactions) + 1 if self.current_question else None,
			"answered": len(self.interactions),
			"max_questions": self.session.max_questions,
			"fetching": self.fetching,
			"pending_save": self.pending_save,
			"online": self.guard.online,
			"final_score": self.session.final_score,
			"error": asdict(self.error) if self.error else None,
			"capture": self.capture.snapshot(),
		}
