from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from pydantic import ValidationError

from .schemas import Draft


logger = logging.getLogger(__name__)


def draft_key(session_id: str) -> str:
	return f"draft:{session_id}"


class DraftStore(Protocol):
	def get(self, key: str) -> Optional[str]: ...
	def set(self, key: str, value: str) -> None: ...
	def delete(self, key: str) -> None: ...


class MemoryDraftStore:
	def __init__(self) -> None:
		self._data: Dict[str, str] = {}

	def get(self, key: str) -> Optional[str]:
		return self._data.get(key)

	def set(self, key: str, value: str) -> None:
		self._data[key] = value

	def delete(self, key: str) -> None:
		self._data.pop(key, None)

	def __contains__(self, key: str) -> bool:
		return key in self._data


class DraftPersistence:
	"""
	Local backup of the answer to the current question.

	The autosave loop belongs to the question it was bound for: binding a new
	question cancels it, invalidates a draft written for any other question and
	starts a fresh loop. Write failures are logged and otherwise ignored; the
	interview carries on without a backup for that tick.
	"""

	def __init__(self, store: DraftStore, session_id: str, *, interval: float = 30.0) -> None:
		self.store = store
		self.session_id = session_id
		self.interval = interval
		self.question_text: Optional[str] = None
		self._snapshot: Optional[Callable[[], str]] = None
		self._task: Optional[asyncio.Task] = None

	@property
	def key(self) -> str:
		return draft_key(self.session_id)

	def bind_question(self, question_text: str, snapshot: Callable[[], str]) -> None:
		self._cancel_autosave()
		stored = self.load()
		if stored is not None and stored.question_text != question_text:
			logger.info("clearing stale draft for session %s", self.session_id)
			self.clear()
		self.question_text = question_text
		self._snapshot = snapshot
		self._start_autosave()

	def unbind(self) -> None:
		self._cancel_autosave()
		self.question_text = None
		self._snapshot = None

	def tick(self) -> bool:
		if self.question_text is None or self._snapshot is None:
			return False
		text = self._snapshot()
		if not text.strip():
			return False
		return self.save(text)

	def save(self, answer_text: str) -> bool:
		if self.question_text is None:
			return False
		draft = Draft(
			session_id=self.session_id,
			question_text=self.question_text,
			answer_text=answer_text,
			timestamp=datetime.now(timezone.utc),
		)
		try:
			self.store.set(self.key, draft.model_dump_json())
		except Exception:
			logger.warning("draft write failed for session %s", self.session_id, exc_info=True)
			return False
		return True

	def load(self) -> Optional[Draft]:
		try:
			raw = self.store.get(self.key)
		except Exception:
			logger.warning("draft read failed for session %s", self.session_id, exc_info=True)
			return None
		if raw is None:
			return None
		try:
			return Draft.model_validate_json(raw)
		except ValidationError:
			logger.warning("discarding unreadable draft for session %s", self.session_id)
			self.clear()
			return None

	def restore(self, buffer_empty: bool) -> Optional[str]:
		"""Return the backed-up answer for the bound question, deleting it; at most once per write."""
		if not buffer_empty or self.question_text is None:
			return None
		draft = self.load()
		if draft is None:
			return None
		if draft.question_text != self.question_text:
			self.clear()
			return None
		self.clear()
		return draft.answer_text

	def clear(self) -> None:
		try:
			self.store.delete(self.key)
		except Exception:
			logger.warning("draft delete failed for session %s", self.session_id, exc_info=True)

	def close(self) -> None:
		self.unbind()

	def _start_autosave(self) -> None:
		if self.interval <= 0:
			return
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			logger.debug("no running event loop; autosave disabled for session %s", self.session_id)
			return
		self._task = loop.create_task(self._autosave_loop())

	def _cancel_autosave(self) -> None:
		task, self._task = self._task, None
		if task is not None and not task.done():
			task.cancel()

	async def _autosave_loop(self) -> None:
		while True:
			await asyncio.sleep(self.interval)
			self.tick()
