from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, UniqueConstraint
from .db import Base


class InterviewSessionRow(Base):
	__tablename__ = "interview_sessions"
	id = Column(String(64), primary_key=True, index=True)
	user_id = Column(String(128), nullable=False, index=True)
	role = Column(String(128), nullable=False)
	session_type = Column(String(64), nullable=False)
	experience_level = Column(String(64), nullable=False)
	industry = Column(String(128), nullable=True)
	# NotStarted | Active | Paused | Completed | Abandoned
	status = Column(String(16), default="NotStarted", nullable=False)
	max_questions = Column(Integer, default=10, nullable=False)
	current_question = Column(Text, nullable=True)
	final_score = Column(Integer, nullable=True)
	started_at = Column(DateTime, nullable=True)
	completed_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class InteractionRow(Base):
	__tablename__ = "interactions"
	# One record per slot; a retried save must never create a second row for the same order
	__table_args__ = (
		UniqueConstraint("session_id", "order", name="uq_interactions_session_order"),
		UniqueConstraint("session_id", "submission_id", name="uq_interactions_submission"),
	)
	id = Column(Integer, primary_key=True, autoincrement=True)
	session_id = Column(String(64), ForeignKey("interview_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
	order = Column(Integer, nullable=False)
	submission_id = Column(String(64), nullable=True)
	question_text = Column(Text, nullable=False)
	answer_text = Column(Text, nullable=False)
	input_method = Column(String(8), nullable=False)
	time_spent_seconds = Column(Integer, default=0, nullable=False)
	timestamp = Column(DateTime, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class DraftRow(Base):
	__tablename__ = "drafts"
	# key is "draft:{session_id}"; value is the serialized draft JSON
	key = Column(String(96), primary_key=True)
	value = Column(Text, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
