from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Sequence

from .errors import IllegalTransitionError
from .schemas import Interaction, Session, SessionStatus
from .stores import SessionStore


logger = logging.getLogger(__name__)


class ScoringFinalizer:
	def __init__(self, store: SessionStore) -> None:
		self.store = store

	@staticmethod
	def compute_score(answered: int, max_questions: int) -> int:
		"""Completion ratio as a percentage, rounded half up.

		Placeholder: it measures how many questions were answered, not how
		well. Replace once a content-aware score is defined.
		"""
		if max_questions <= 0:
			return 0
		ratio = min(answered, max_questions) / max_questions
		return int(math.floor(ratio * 100 + 0.5))

	async def finalize(self, session: Session, interactions: Sequence[Interaction]) -> Session:
		if session.status == SessionStatus.COMPLETED or session.final_score is not None:
			raise IllegalTransitionError("This interview has already been scored.")
		score = self.compute_score(len(interactions), session.max_questions)
		updated = await self.store.update(
			session.id,
			status=SessionStatus.COMPLETED,
			final_score=score,
			completed_at=datetime.now(timezone.utc),
		)
		logger.info("session %s completed with score %d (%d/%d answered)", session.id, score, len(interactions), session.max_questions)
		return updated
