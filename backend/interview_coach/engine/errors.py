"""
Error taxonomy for the interview session engine.

Every error the engine lets escape is an ``EngineError`` carrying a kind, a
message that can be shown to the candidate as-is, and the recovery action the
client should offer.

Kinds:
- retryable: question fetch / interaction save / finalize failed; state unchanged, offer retry
- fallback: speech input unavailable; degrade to manual text entry
- fatal_session: session missing or not owned by the caller; leave the live screen
- validation: the answer was rejected before any network call
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


RETRYABLE = "retryable"
FALLBACK = "fallback"
FATAL_SESSION = "fatal_session"
VALIDATION = "validation"
CONFLICT = "conflict"


class EngineError(Exception):
	kind: str = RETRYABLE
	action: Optional[str] = None

	def __init__(self, message: str, *, action: Optional[str] = None) -> None:
		super().__init__(message)
		self.message = message
		if action is not None:
			self.action = action

	def to_user_facing(self) -> "UserFacingError":
		return UserFacingError(kind=self.kind, message=self.message, action=self.action)


class RetryableError(EngineError):
	kind = RETRYABLE
	action = "retry"


class QuestionFetchError(RetryableError):
	action = "retry_fetch"


class InteractionSaveError(RetryableError):
	action = "retry_save"


class FinalizeError(RetryableError):
	action = "retry_end"


class FallbackError(EngineError):
	kind = FALLBACK
	action = "use_text"


class SpeechUnavailableError(FallbackError):
	pass


class FatalSessionError(EngineError):
	kind = FATAL_SESSION
	action = "exit"


class SessionNotFoundError(FatalSessionError):
	pass


class SessionAccessError(FatalSessionError):
	pass


class AnswerValidationError(EngineError):
	kind = VALIDATION
	action = "edit_answer"


class IllegalTransitionError(EngineError):
	kind = CONFLICT
	action = None


class SubmitInProgressError(EngineError):
	kind = CONFLICT
	action = "wait"


# Collaborator-level errors. These never reach the client directly; the
# controller converts them into one of the engine errors above.

class ProviderError(Exception):
	"""Question provider failure with an HTTP-like status (0 for transport errors)."""

	def __init__(self, status: int, message: str) -> None:
		super().__init__(f"{status}: {message}")
		self.status = status
		self.message = message

	@property
	def retryable(self) -> bool:
		return self.status not in (400, 401, 403)


class RecorderError(Exception):
	pass


class StoreNotFound(Exception):
	pass


@dataclass(frozen=True)
class UserFacingError:
	kind: str
	message: str
	action: Optional[str] = None
