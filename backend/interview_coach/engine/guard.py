from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .capture import AnswerCapture


logger = logging.getLogger(__name__)

BEFORE_UNLOAD = "beforeunload"
VISIBILITY_CHANGE = "visibilitychange"
OFFLINE = "offline"
ONLINE = "online"


class PageEvents:
	"""Page-level events for one browser context (one tab)."""

	def __init__(self) -> None:
		self._handlers: Dict[str, List[Callable[..., Any]]] = {}

	def on(self, event: str, handler: Callable[..., Any]) -> None:
		self._handlers.setdefault(event, []).append(handler)

	def off(self, event: str, handler: Callable[..., Any]) -> None:
		handlers = self._handlers.get(event, [])
		if handler in handlers:
			handlers.remove(handler)

	def emit(self, event: str, **kwargs: Any) -> List[Any]:
		return [handler(**kwargs) for handler in list(self._handlers.get(event, []))]

	def listeners(self, event: str) -> int:
		return len(self._handlers.get(event, []))


class InterruptionGuard:
	"""
	Watches the page for unload, tab-hide and connectivity changes.

	The unload warning is advisory; a forced close can still lose the answer,
	which is why drafts are written on every autosave tick as well.
	"""

	def __init__(
		self,
		capture: AnswerCapture,
		*,
		on_offline: Optional[Callable[[], None]] = None,
		on_online: Optional[Callable[[], None]] = None,
		on_leave_confirmed: Optional[Callable[[], Awaitable[Any]]] = None,
	) -> None:
		self.capture = capture
		self.online = True
		self._on_offline = on_offline
		self._on_online = on_online
		self._on_leave_confirmed = on_leave_confirmed
		self._events: Optional[PageEvents] = None

	def register(self, events: PageEvents) -> None:
		if self._events is not None:
			self.unregister()
		events.on(BEFORE_UNLOAD, self.handle_before_unload)
		events.on(VISIBILITY_CHANGE, self.handle_visibility_change)
		events.on(OFFLINE, self.handle_offline)
		events.on(ONLINE, self.handle_online)
		self._events = events

	def unregister(self) -> None:
		events, self._events = self._events, None
		if events is None:
			return
		events.off(BEFORE_UNLOAD, self.handle_before_unload)
		events.off(VISIBILITY_CHANGE, self.handle_visibility_change)
		events.off(OFFLINE, self.handle_offline)
		events.off(ONLINE, self.handle_online)

	def handle_before_unload(self) -> bool:
		"""True when the browser should show its native leave confirmation."""
		warn = self.capture.has_unsaved_answer or self.capture.capturing
		if warn:
			self.capture.save_draft()
		return warn

	def handle_visibility_change(self, hidden: bool) -> None:
		if hidden:
			self.capture.on_hidden()
		else:
			self.capture.on_visible()

	def handle_offline(self) -> None:
		self.online = False
		logger.info("session %s went offline", self.capture.session_id)
		if self._on_offline is not None:
			self._on_offline()

	def handle_online(self) -> None:
		self.online = True
		if self._on_online is not None:
			self._on_online()

	async def confirm_leave(self) -> Any:
		"""The candidate confirmed leaving from the interruption prompt."""
		if self._on_leave_confirmed is None:
			return None
		return await self._on_leave_confirmed()
