import asyncio
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from interview_coach import models  # noqa: F401  (registers the tables on Base)
from interview_coach.db import Base
from interview_coach.engine.controller import SessionController
from interview_coach.engine.drafts import MemoryDraftStore
from interview_coach.engine.errors import ProviderError, RecorderError, StoreNotFound
from interview_coach.engine.schemas import Interaction, QuestionRequest, SaveRequest, Session
from interview_coach.engine.speech import ClientRecognitionBackend


class FakeClock:
	def __init__(self, start: float = 1000.0) -> None:
		self.now = start

	def __call__(self) -> float:
		return self.now

	def advance(self, seconds: float) -> None:
		self.now += seconds


class FakeQuestionProvider:
	"""Numbered questions; ``failures`` fails the next N calls, ``gate`` holds calls until set."""

	def __init__(self) -> None:
		self.requests: List[QuestionRequest] = []
		self.failures = 0
		self.gate: Optional[asyncio.Event] = None

	async def fetch_next(self, request: QuestionRequest) -> str:
		self.requests.append(request)
		if self.gate is not None:
			await self.gate.wait()
		if self.failures:
			self.failures -= 1
			raise ProviderError(503, "provider unavailable")
		return f"Tell me about challenge number {len(self.requests)}?"


class MemorySessionStore:
	def __init__(self, *sessions: Session) -> None:
		self.sessions = {s.id: s.model_copy() for s in sessions}
		self.updates: List[dict] = []
		self.fail_updates = False

	async def get(self, session_id: str) -> Session:
		if session_id not in self.sessions:
			raise StoreNotFound(session_id)
		return self.sessions[session_id].model_copy()

	async def update(self, session_id: str, **changes) -> Session:
		if session_id not in self.sessions:
			raise StoreNotFound(session_id)
		if self.fail_updates:
			raise ConnectionError("store unavailable")
		self.updates.append(changes)
		updated = self.sessions[session_id].model_copy(update=changes)
		self.sessions[session_id] = updated
		return updated.model_copy()


class MemoryRecorder:
	"""
	``failures`` rejects the next N saves; ``lost_responses`` stores the next N
	saves and then raises, as when the response never makes it back.
	"""

	def __init__(self) -> None:
		self.rows: List[Interaction] = []
		self.requests: List[SaveRequest] = []
		self.failures = 0
		self.lost_responses = 0
		self.gate: Optional[asyncio.Event] = None

	async def save(self, request: SaveRequest) -> Interaction:
		self.requests.append(request)
		if self.gate is not None:
			await self.gate.wait()
		if self.failures:
			self.failures -= 1
			raise RecorderError("connection reset")
		for row in self.rows:
			if row.session_id == request.session_id and request.submission_id and row.submission_id == request.submission_id:
				return row
		order = sum(1 for r in self.rows if r.session_id == request.session_id) + 1
		row = Interaction(
			session_id=request.session_id,
			order=order,
			question_text=request.question_text,
			answer_text=request.answer_text,
			input_method=request.input_method,
			timestamp=request.timestamp,
			time_spent_seconds=request.time_spent_seconds,
			submission_id=request.submission_id,
		)
		self.rows.append(row)
		if self.lost_responses:
			self.lost_responses -= 1
			raise RecorderError("response lost")
		return row

	async def list(self, session_id: str) -> List[Interaction]:
		return sorted((r for r in self.rows if r.session_id == session_id), key=lambda r: r.order)


def make_session(**overrides) -> Session:
	fields = dict(
		id="session-1",
		user_id="user-1",
		role="Software Engineer",
		session_type="Behavioral",
		experience_level="Mid-level",
		max_questions=10,
	)
	fields.update(overrides)
	return Session(**fields)


class Harness:
	def __init__(self, session: Session) -> None:
		self.session = session
		self.store = MemorySessionStore(session)
		self.recorder = MemoryRecorder()
		self.questions = FakeQuestionProvider()
		self.backend = ClientRecognitionBackend()
		self.drafts = MemoryDraftStore()
		self.clock = FakeClock()

	def _params(self, overrides: dict) -> dict:
		params = dict(
			questions=self.questions,
			speech_backend=self.backend,
			draft_store=self.drafts,
			autosave_interval=0,
			clock=self.clock,
		)
		params.update(overrides)
		return params

	def build(self, **overrides) -> SessionController:
		session = self.store.sessions[self.session.id].model_copy()
		return SessionController(session, recorder=self.recorder, store=self.store, **self._params(overrides))

	async def load(self, user_id: Optional[str] = None, **overrides) -> SessionController:
		return await SessionController.load(
			self.session.id,
			user_id or self.session.user_id,
			store=self.store,
			recorder=self.recorder,
			**self._params(overrides),
		)


@pytest.fixture
def harness() -> Harness:
	return Harness(make_session())


@pytest.fixture
def session_factory():
	engine = create_engine(
		"sqlite://",
		connect_args={"check_same_thread": False},
		poolclass=StaticPool,
	)
	Base.metadata.create_all(bind=engine)
	factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
	yield factory
	engine.dispose()
