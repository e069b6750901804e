from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional, Protocol

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..models import DraftRow, InteractionRow, InterviewSessionRow
from .errors import RecorderError, StoreNotFound
from .schemas import InputMethod, Interaction, SaveRequest, Session, SessionStatus


logger = logging.getLogger(__name__)

_UPDATABLE = {"status", "started_at", "completed_at", "final_score", "current_question"}


class SessionStore(Protocol):
	async def get(self, session_id: str) -> Session: ...
	async def update(self, session_id: str, **changes: Any) -> Session: ...


class InteractionRecorder(Protocol):
	async def save(self, request: SaveRequest) -> Interaction: ...
	async def list(self, session_id: str) -> List[Interaction]: ...


def _to_session(row: InterviewSessionRow) -> Session:
	return Session(
		id=row.id,
		user_id=row.user_id,
		role=row.role,
		session_type=row.session_type,
		experience_level=row.experience_level,
		industry=row.industry,
		status=SessionStatus(row.status),
		started_at=row.started_at,
		completed_at=row.completed_at,
		final_score=row.final_score,
		max_questions=row.max_questions,
		current_question=row.current_question,
	)


def _to_interaction(row: InteractionRow) -> Interaction:
	return Interaction(
		session_id=row.session_id,
		order=row.order,
		question_text=row.question_text,
		answer_text=row.answer_text,
		input_method=InputMethod(row.input_method),
		timestamp=row.timestamp,
		time_spent_seconds=row.time_spent_seconds,
		submission_id=row.submission_id,
	)


def _naive_utc(value: datetime) -> datetime:
	# SQLite DateTime columns hold naive UTC
	if value.tzinfo is not None:
		return value.replace(tzinfo=None) - value.utcoffset()
	return value


class SqlSessionStore:
	def __init__(self, session_factory: sessionmaker) -> None:
		self._session_factory = session_factory

	async def create(self, session: Session) -> Session:
		with self._session_factory() as db:
			row = InterviewSessionRow(
				id=session.id,
				user_id=session.user_id,
				role=session.role,
				session_type=session.session_type,
				experience_level=session.experience_level,
				industry=session.industry,
				status=session.status.value,
				max_questions=session.max_questions,
			)
			db.add(row)
			db.commit()
			db.refresh(row)
			return _to_session(row)

	async def get(self, session_id: str) -> Session:
		with self._session_factory() as db:
			row = db.get(InterviewSessionRow, session_id)
			if row is None:
				raise StoreNotFound(session_id)
			return _to_session(row)

	async def update(self, session_id: str, **changes: Any) -> Session:
		unknown = set(changes) - _UPDATABLE
		if unknown:
			raise ValueError(f"Cannot update session fields: {sorted(unknown)}")
		with self._session_factory() as db:
			row = db.get(InterviewSessionRow, session_id)
			if row is None:
				raise StoreNotFound(session_id)
			for field, value in changes.items():
				if isinstance(value, SessionStatus):
					value = value.value
				elif isinstance(value, datetime):
					value = _naive_utc(value)
				setattr(row, field, value)
			# one commit: every field in ``changes`` lands together or not at all
			db.commit()
			db.refresh(row)
			return _to_session(row)

	async def list_for_user(self, user_id: str) -> List[Session]:
		with self._session_factory() as db:
			rows = (
				db.query(InterviewSessionRow)
				.filter(InterviewSessionRow.user_id == user_id)
				.order_by(InterviewSessionRow.created_at.desc())
				.all()
			)
			return [_to_session(r) for r in rows]


class SqlInteractionRecorder:
	"""
	Stores finalized answers. ``order`` comes from the committed count in the
	database, never from the caller, and the unique constraints reject a
	second row for the same slot or the same submission.
	"""

	def __init__(self, session_factory: sessionmaker) -> None:
		self._session_factory = session_factory

	async def save(self, request: SaveRequest) -> Interaction:
		try:
			with self._session_factory() as db:
				if db.get(InterviewSessionRow, request.session_id) is None:
					raise StoreNotFound(request.session_id)
				existing = self._by_submission(db, request.session_id, request.submission_id)
				if existing is not None:
					logger.info("save for submission %s already stored as order %d", request.submission_id, existing.order)
					return _to_interaction(existing)
				committed = (
					db.query(func.count(InteractionRow.id))
					.filter(InteractionRow.session_id == request.session_id)
					.scalar()
				) or 0
				row = InteractionRow(
					session_id=request.session_id,
					order=committed + 1,
					submission_id=request.submission_id,
					question_text=request.question_text,
					answer_text=request.answer_text,
					input_method=request.input_method.value,
					time_spent_seconds=request.time_spent_seconds,
					timestamp=_naive_utc(request.timestamp),
				)
				db.add(row)
				try:
					db.commit()
				except IntegrityError as err:
					db.rollback()
					existing = self._by_submission(db, request.session_id, request.submission_id)
					if existing is not None:
						return _to_interaction(existing)
					raise RecorderError(f"Interaction slot {committed + 1} was taken concurrently") from err
				db.refresh(row)
				return _to_interaction(row)
		except SQLAlchemyError as err:
			raise RecorderError(str(err)) from err

	def _by_submission(self, db, session_id: str, submission_id: Optional[str]) -> Optional[InteractionRow]:
		if not submission_id:
			return None
		return (
			db.query(InteractionRow)
			.filter(InteractionRow.session_id == session_id, InteractionRow.submission_id == submission_id)
			.first()
		)

	async def list(self, session_id: str) -> List[Interaction]:
		with self._session_factory() as db:
			rows = (
				db.query(InteractionRow)
				.filter(InteractionRow.session_id == session_id)
				.order_by(InteractionRow.order.asc())
				.all()
			)
			return [_to_interaction(r) for r in rows]


class SqlDraftStore:
	def __init__(self, session_factory: sessionmaker) -> None:
		self._session_factory = session_factory

	def get(self, key: str) -> Optional[str]:
		with self._session_factory() as db:
			row = db.get(DraftRow, key)
			return row.value if row is not None else None

	def set(self, key: str, value: str) -> None:
		with self._session_factory() as db:
			db.merge(DraftRow(key=key, value=value, updated_at=datetime.utcnow()))
			db.commit()

	def delete(self, key: str) -> None:
		with self._session_factory() as db:
			row = db.get(DraftRow, key)
			if row is not None:
				db.delete(row)
				db.commit()
