"""
Interview Sessions API
======================

HTTP surface of the interview session engine. One ``SessionController`` per
live session is kept in a ``ControllerRegistry`` on ``app.state``; the
browser drives it by forwarding answer edits, speech recognition events and
page events (tab hidden, offline, beforeunload).

API Endpoints:
- POST /sessions: create a NotStarted session
- GET /sessions: the caller's sessions, newest first
- GET /sessions/{id}: mount (resume question, restore draft) and return a snapshot
- POST /sessions/{id}/start|pause|resume|end|abandon|skip|next|retry-save|discard-pending
- PUT/DELETE /sessions/{id}/answer, POST /sessions/{id}/answer/submit|draft
- POST /sessions/{id}/input-mode
- POST /sessions/{id}/speech/start|stop|retry|events
- POST /sessions/{id}/page-events
- GET /sessions/{id}/report
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import sessionmaker

from ..db import get_session_factory
from ..engine.controller import SessionController
from ..engine.errors import (
	CONFLICT,
	FALLBACK,
	RETRYABLE,
	VALIDATION,
	EngineError,
	SessionAccessError,
	SessionNotFoundError,
	StoreNotFound,
)
from ..engine.guard import BEFORE_UNLOAD, OFFLINE, ONLINE, VISIBILITY_CHANGE
from ..engine.providers import QuestionProvider, build_question_provider
from ..engine.schemas import SESSION_TYPES, InputMethod, Session
from ..engine.speech import Capability, ClientRecognitionBackend
from ..engine.stores import SqlDraftStore, SqlInteractionRecorder, SqlSessionStore
from ..settings import settings
from .auth import User, get_current_user


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


# ============================================================================
# CONTROLLER REGISTRY
# ============================================================================

class ControllerRegistry:
	"""Live controllers by session id; at most one per session in this process."""

	def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
		self._controllers: Dict[str, SessionController] = {}
		self._touched: Dict[str, float] = {}
		self._clock = clock

	def get(self, session_id: str) -> Optional[SessionController]:
		controller = self._controllers.get(session_id)
		if controller is not None:
			self._touched[session_id] = self._clock()
		return controller

	def add(self, controller: SessionController) -> SessionController:
		session_id = controller.session.id
		existing = self._controllers.get(session_id)
		self._touched[session_id] = self._clock()
		if existing is not None:
			controller.close()
			return existing
		self._controllers[session_id] = controller
		return controller

	def discard(self, session_id: str) -> None:
		self._touched.pop(session_id, None)
		controller = self._controllers.pop(session_id, None)
		if controller is not None:
			controller.close()

	def evict_idle(self, max_idle_seconds: float) -> List[str]:
		"""Close controllers nobody has touched for ``max_idle_seconds``; a later request reloads them."""
		now = self._clock()
		evicted = []
		for session_id, controller in list(self._controllers.items()):
			if controller.busy or now - self._touched.get(session_id, now) < max_idle_seconds:
				continue
			# keep whatever was typed since the last autosave tick
			controller.capture.save_draft()
			self.discard(session_id)
			evicted.append(session_id)
		if evicted:
			logger.info("evicted %d idle session controllers", len(evicted))
		return evicted

	def close_all(self) -> None:
		for session_id in list(self._controllers):
			self.discard(session_id)

	def __contains__(self, session_id: str) -> bool:
		return session_id in self._controllers

	def __len__(self) -> int:
		return len(self._controllers)


def get_registry(request: Request) -> ControllerRegistry:
	registry = getattr(request.app.state, "controllers", None)
	if registry is None:
		registry = ControllerRegistry()
		request.app.state.controllers = registry
	return registry


def get_question_provider(request: Request) -> QuestionProvider:
	provider = getattr(request.app.state, "question_provider", None)
	if provider is None:
		provider = build_question_provider()
		request.app.state.question_provider = provider
	return provider


# ============================================================================
# ERROR MAPPING
# ============================================================================

def status_for(error: EngineError) -> int:
	if isinstance(error, SessionNotFoundError):
		return 404
	if isinstance(error, SessionAccessError):
		return 403
	if error.kind == VALIDATION:
		return 422
	if error.kind in (CONFLICT, FALLBACK):
		return 409
	if error.kind == RETRYABLE:
		return 503
	return 400


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
	if isinstance(exc, SessionNotFoundError):
		session_id = request.path_params.get("session_id")
		if session_id:
			get_registry(request).discard(session_id)
	return JSONResponse(
		status_code=status_for(exc),
		content={"detail": {"message": exc.message, "action": exc.action, "kind": exc.kind}},
	)


# ============================================================================
# REQUEST MODELS
# ============================================================================

class CreateSessionRequest(BaseModel):
	role: str = Field(min_length=1, max_length=128)
	session_type: str
	experience_level: str = Field(min_length=1, max_length=64)
	industry: Optional[str] = Field(default=None, max_length=128)
	max_questions: Optional[int] = Field(default=None, ge=1, le=20)

	@field_validator("session_type")
	@classmethod
	def _known_type(cls, value: str) -> str:
		if value not in SESSION_TYPES:
			raise ValueError(f"session_type must be one of {SESSION_TYPES}")
		return value


class AnswerTextRequest(BaseModel):
	text: str


class InputModeRequest(BaseModel):
	mode: Literal["voice", "text"]


class SpeechRetryRequest(BaseModel):
	# What the browser found after walking the candidate through the permission prompt
	capability: Capability = Capability.SUPPORTED


class SpeechEventRequest(BaseModel):
	stream_id: int
	type: Literal["interim", "final", "error", "end"]
	text: str = ""
	kind: Optional[str] = None


class PageEventRequest(BaseModel):
	event: Literal["hidden", "visible", "offline", "online", "beforeunload"]


# ============================================================================
# HELPERS
# ============================================================================

def _speech_backend(controller: SessionController) -> ClientRecognitionBackend:
	return controller.capture.speech.backend


async def _open_controller(
	session_id: str,
	user: User,
	registry: ControllerRegistry,
	factory: sessionmaker,
	questions: QuestionProvider,
	capability: Optional[Capability] = None,
) -> SessionController:
	controller = registry.get(session_id)
	if controller is not None:
		if controller.session.user_id != user.user_id:
			raise SessionAccessError("You do not have access to this interview session.")
		return controller
	controller = await SessionController.load(
		session_id,
		user.user_id,
		store=SqlSessionStore(factory),
		recorder=SqlInteractionRecorder(factory),
		questions=questions,
		speech_backend=ClientRecognitionBackend(capability or Capability.SUPPORTED),
		draft_store=SqlDraftStore(factory),
	)
	return registry.add(controller)


def _done(controller: SessionController, registry: ControllerRegistry) -> Dict[str, Any]:
	snapshot = controller.snapshot()
	if controller.session.status.terminal:
		registry.discard(controller.session.id)
	return snapshot


class _Live:
	"""Dependency bundle resolving the caller's live controller for ``session_id``."""

	def __init__(
		self,
		session_id: str,
		user: User = Depends(get_current_user),
		registry: ControllerRegistry = Depends(get_registry),
		factory: sessionmaker = Depends(get_session_factory),
		questions: QuestionProvider = Depends(get_question_provider),
	) -> None:
		self.session_id = session_id
		self.user = user
		self.registry = registry
		self.factory = factory
		self.questions = questions

	async def controller(self, capability: Optional[Capability] = None) -> SessionController:
		return await _open_controller(self.session_id, self.user, self.registry, self.factory, self.questions, capability)


# ============================================================================
# ROUTES
# ============================================================================

@router.post("", status_code=201)
async def create_session(
	req: CreateSessionRequest,
	user: User = Depends(get_current_user),
	factory: sessionmaker = Depends(get_session_factory),
):
	session = Session(
		id=uuid.uuid4().hex,
		user_id=user.user_id,
		role=req.role.strip(),
		session_type=req.session_type,
		experience_level=req.experience_level.strip(),
		industry=(req.industry or "").strip() or None,
		max_questions=req.max_questions or settings.max_questions,
	)
	created = await SqlSessionStore(factory).create(session)
	logger.info("session %s created for user %s", created.id, user.user_id)
	return created.model_dump(mode="json")


@router.get("")
async def list_sessions(
	user: User = Depends(get_current_user),
	factory: sessionmaker = Depends(get_session_factory),
):
	sessions = await SqlSessionStore(factory).list_for_user(user.user_id)
	return {"sessions": [s.model_dump(mode="json") for s in sessions]}


@router.get("/{session_id}")
async def mount_session(session_id: str, speech: Optional[Capability] = None, live: _Live = Depends()):
	"""Mount the live screen; ``speech`` is the capability the browser detected."""
	existing = live.registry.get(session_id)
	controller = await live.controller(speech)
	if controller is existing and speech is not None:
		# A reload or another tab: the previous page's recognizer is gone
		controller.capture.speech.dispose()
		_speech_backend(controller).capability = speech
		controller.capture.speech.request_permission()
	return _done(controller, live.registry)


@router.post("/{session_id}/start")
async def start_session(live: _Live = Depends()):
	controller = await live.controller()
	await controller.start()
	return controller.snapshot()


@router.post("/{session_id}/pause")
async def pause_session(live: _Live = Depends()):
	controller = await live.controller()
	await controller.pause()
	return controller.snapshot()


@router.post("/{session_id}/resume")
async def resume_session(live: _Live = Depends()):
	controller = await live.controller()
	await controller.resume()
	return controller.snapshot()


@router.post("/{session_id}/end")
async def end_session(live: _Live = Depends()):
	controller = await live.controller()
	await controller.end_interview()
	return _done(controller, live.registry)


@router.post("/{session_id}/abandon")
async def abandon_session(live: _Live = Depends()):
	"""The candidate confirmed leaving from the interruption prompt."""
	controller = await live.controller()
	await controller.guard.confirm_leave()
	return _done(controller, live.registry)


@router.post("/{session_id}/skip")
async def skip_question(live: _Live = Depends()):
	controller = await live.controller()
	await controller.skip_question()
	return _done(controller, live.registry)


@router.post("/{session_id}/next")
async def next_question(live: _Live = Depends()):
	controller = await live.controller()
	await controller.next_question()
	return controller.snapshot()


@router.post("/{session_id}/retry-save")
async def retry_save(live: _Live = Depends()):
	controller = await live.controller()
	await controller.retry_save()
	return _done(controller, live.registry)


@router.post("/{session_id}/discard-pending")
async def discard_pending(live: _Live = Depends()):
	controller = await live.controller()
	controller.discard_pending()
	return controller.snapshot()


# ---- answer ----

@router.put("/{session_id}/answer")
async def set_answer_text(req: AnswerTextRequest, live: _Live = Depends()):
	controller = await live.controller()
	controller.capture.set_text(req.text)
	return controller.snapshot()


@router.delete("/{session_id}/answer")
async def clear_answer(live: _Live = Depends()):
	controller = await live.controller()
	controller.capture.clear()
	return controller.snapshot()


@router.post("/{session_id}/answer/submit")
async def submit_answer(live: _Live = Depends()):
	controller = await live.controller()
	await controller.capture.submit()
	return _done(controller, live.registry)


@router.post("/{session_id}/answer/draft")
async def save_draft(live: _Live = Depends()):
	controller = await live.controller()
	saved = controller.capture.save_draft()
	return {"saved": saved}


@router.post("/{session_id}/input-mode")
async def set_input_mode(req: InputModeRequest, live: _Live = Depends()):
	controller = await live.controller()
	controller.capture.set_input_mode(InputMethod(req.mode))
	return controller.snapshot()


# ---- speech ----

@router.post("/{session_id}/speech/start")
async def start_speech(live: _Live = Depends()):
	controller = await live.controller()
	controller.capture.start_capture()
	return controller.snapshot()


@router.post("/{session_id}/speech/stop")
async def stop_speech(live: _Live = Depends()):
	controller = await live.controller()
	controller.capture.stop_capture()
	return controller.snapshot()


@router.post("/{session_id}/speech/retry")
async def retry_speech(req: SpeechRetryRequest, live: _Live = Depends()):
	controller = await live.controller()
	_speech_backend(controller).capability = req.capability
	controller.capture.retry_speech()
	return controller.snapshot()


@router.post("/{session_id}/speech/events")
async def speech_event(req: SpeechEventRequest, live: _Live = Depends()):
	controller = await live.controller()
	accepted = _speech_backend(controller).deliver(req.stream_id, req.type, text=req.text, kind=req.kind)
	return {"accepted": accepted, "state": controller.snapshot()}


# ---- page ----

@router.post("/{session_id}/page-events")
async def page_event(req: PageEventRequest, live: _Live = Depends()):
	controller = await live.controller()
	events = controller.page_events
	warn = False
	if req.event in ("hidden", "visible"):
		events.emit(VISIBILITY_CHANGE, hidden=req.event == "hidden")
	elif req.event == "offline":
		events.emit(OFFLINE)
	elif req.event == "online":
		events.emit(ONLINE)
	else:
		warn = any(events.emit(BEFORE_UNLOAD))
	return {"warn": warn, "state": controller.snapshot()}


# ---- report ----

@router.get("/{session_id}/report")
async def session_report(
	session_id: str,
	user: User = Depends(get_current_user),
	factory: sessionmaker = Depends(get_session_factory),
):
	try:
		session = await SqlSessionStore(factory).get(session_id)
	except StoreNotFound as err:
		raise SessionNotFoundError("Interview session not found.") from err
	if session.user_id != user.user_id:
		raise SessionAccessError("You do not have access to this interview session.")
	interactions = await SqlInteractionRecorder(factory).list(session_id)
	return {
		"session": session.model_dump(mode="json"),
		"interactions": [i.model_dump(mode="json") for i in interactions],
	}
