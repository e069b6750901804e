from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


SKIPPED_ANSWER = "[Question Skipped]"

SESSION_TYPES: List[str] = ["Behavioral", "Technical", "Case Study"]


class SessionStatus(str, enum.Enum):
	NOT_STARTED = "NotStarted"
	ACTIVE = "Active"
	PAUSED = "Paused"
	COMPLETED = "Completed"
	ABANDONED = "Abandoned"

	@property
	def terminal(self) -> bool:
		return self in (SessionStatus.COMPLETED, SessionStatus.ABANDONED)


class InputMethod(str, enum.Enum):
	VOICE = "voice"
	TEXT = "text"
	SKIP = "skip"


class Session(BaseModel):
	id: str
	user_id: str
	role: str
	session_type: str
	experience_level: str
	industry: Optional[str] = None
	status: SessionStatus = SessionStatus.NOT_STARTED
	started_at: Optional[datetime] = None
	completed_at: Optional[datetime] = None
	final_score: Optional[int] = None
	max_questions: int = Field(default=10, ge=1, le=20)
	current_question: Optional[str] = None


class Interaction(BaseModel):
	model_config = ConfigDict(frozen=True)

	session_id: str
	order: int = Field(ge=1)
	question_text: str
	answer_text: str
	input_method: InputMethod
	timestamp: datetime
	time_spent_seconds: int = 0
	submission_id: Optional[str] = None


class Draft(BaseModel):
	session_id: str
	question_text: str
	answer_text: str
	timestamp: datetime


class AnswerPayload(BaseModel):
	"""An answer frozen at submit time; resent unchanged when a save is retried."""

	model_config = ConfigDict(frozen=True)

	text: str
	time_spent_seconds: int
	input_method: InputMethod
	timestamp: datetime
	submission_id: str


class HistoryItem(BaseModel):
	question: str
	answer: str


class QuestionRequest(BaseModel):
	role: str
	session_type: str
	experience_level: str
	industry: Optional[str] = None
	history: List[HistoryItem] = Field(default_factory=list)


class SaveRequest(BaseModel):
	session_id: str
	question_text: str
	answer_text: str
	timestamp: datetime
	input_method: InputMethod
	time_spent_seconds: int = 0
	submission_id: Optional[str] = None


class TranscriptBuffer:
	"""Committed speech/typed text plus the last uncommitted speech fragment."""

	def __init__(self) -> None:
		self.committed_text: str = ""
		self.interim_text: str = ""

	def with_final(self, text: str) -> str:
		"""Committed text with a final segment appended, without mutating the buffer."""
		if self.committed_text:
			return f"{self.committed_text} {text}"
		return text

	def is_empty(self) -> bool:
		return not self.committed_text.strip()

	def reset(self) -> None:
		self.committed_text = ""
		self.interim_text = ""
