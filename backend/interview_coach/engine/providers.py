"""
Question Providers
==================

The question provider is an opaque external collaborator: given the session
profile and the answered history it returns the next question text, or raises
``ProviderError``.

- GeminiQuestionProvider: asks the LLM for one question, STRICT JSON
- QuestionBankProvider: curated offline questions, never repeating the history
- ResilientQuestionProvider: retries with exponential backoff and jitter, then
  degrades to a fallback provider when one is configured
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from ..gemini_client import GeminiClient, GeminiError
from ..settings import settings
from .errors import ProviderError
from .schemas import QuestionRequest


logger = logging.getLogger(__name__)

MIN_QUESTION_LENGTH = 10
MAX_QUESTION_LENGTH = 1000
MAX_HISTORY = 50


class QuestionProvider(Protocol):
	async def fetch_next(self, request: QuestionRequest) -> str: ...


def difficulty_for(asked: int) -> str:
	if asked < 3:
		return "easy"
	if asked < 7:
		return "medium"
	return "hard"


def validate_question_text(text: Any) -> str:
	if not isinstance(text, str):
		raise ProviderError(502, "Missing or invalid questionText in response")
	question = text.strip()
	if len(question) < MIN_QUESTION_LENGTH:
		raise ProviderError(502, "Question text is too short")
	if len(question) > MAX_QUESTION_LENGTH:
		raise ProviderError(502, "Question text is too long")
	return question


def _extract_json_object(text: str) -> Dict[str, Any]:
	try:
		return json.loads(text)
	except Exception:
		pass
	code_block = re.search(r"```json\s*([\s\S]*?)\s*```", text)
	if code_block:
		try:
			return json.loads(code_block.group(1))
		except Exception:
			pass
	first = text.find("{")
	last = text.rfind("}")
	if first != -1 and last > first:
		try:
			return json.loads(text[first : last + 1])
		except Exception:
			pass
	raise ProviderError(502, "Question provider did not return valid JSON")


# ============================================================================
# LLM PROVIDER
# ============================================================================

def _build_question_prompt(request: QuestionRequest) -> str:
	history = request.history[-MAX_HISTORY:]
	if history:
		transcript = "\n".join(f"Q{i}: {item.question}\nA{i}: {item.answer}" for i, item in enumerate(history, start=1))
	else:
		transcript = "(no questions asked yet)"
	industry = request.industry or "any industry"
	return f"""
You are an experienced interviewer running a {request.session_type} mock interview.

Candidate profile:
- Target role: {request.role}
- Experience level: {request.experience_level}
- Industry: {industry}

Conversation so far:
{transcript}

Ask the NEXT question only. Difficulty: {difficulty_for(len(request.history))}.
Do not repeat or paraphrase a question that was already asked. Build on the candidate's previous answers where it helps.
Keep the question to one or two sentences.

Return STRICT JSON only, no markdown:
{{
  "questionText": string
}}
""".strip()


class GeminiQuestionProvider:
	def __init__(self, client_factory: Callable[[], GeminiClient] = GeminiClient) -> None:
		self._client_factory = client_factory

	async def fetch_next(self, request: QuestionRequest) -> str:
		try:
			client = self._client_factory()
		except ValueError as err:
			raise ProviderError(401, str(err)) from err
		try:
			raw = await client.generate(_build_question_prompt(request))
		except GeminiError as err:
			raise ProviderError(err.status, err.message) from err
		finally:
			await client.aclose()
		data = _extract_json_object(raw)
		if not isinstance(data, dict):
			raise ProviderError(502, "Invalid response format from question provider")
		return validate_question_text(data.get("questionText") or data.get("question"))


# ============================================================================
# OFFLINE QUESTION BANK
# ============================================================================

QUESTION_BANK: Dict[str, Dict[str, List[str]]] = {
	"Behavioral": {
		"Software Engineer": [
			"Tell me about a time when you had to debug a particularly challenging issue. How did you approach it?",
			"Describe a situation where you had to work with a difficult team member. How did you handle it?",
			"Can you share an example of when you had to learn a new technology quickly for a project?",
			"Tell me about a time when you disagreed with a technical decision. How did you handle it?",
			"Describe a project where you had to balance technical debt with new feature development.",
			"Tell me about a time when you had to explain a complex technical concept to a non-technical stakeholder.",
			"Can you describe a situation where you had to make a trade-off between code quality and delivery timeline?",
			"Tell me about a time when you identified and fixed a performance bottleneck in an application.",
			"Describe a situation where you had to refactor legacy code. What was your approach?",
			"Tell me about a time when you had to mentor a junior developer. How did you approach it?",
		],
		"Product Manager": [
			"Tell me about a time when you had to prioritize features with limited resources. How did you decide?",
			"Describe a situation where you had to pivot a product strategy based on user feedback.",
			"Tell me about a time when you had to communicate bad news to stakeholders. How did you handle it?",
			"Describe a product launch that didn't go as planned. What did you learn?",
			"Tell me about a time when you had to make a data-driven decision with incomplete information.",
			"Tell me about a time when you had to influence without authority to get a project done.",
		],
		"Data Scientist": [
			"Tell me about a time when your initial hypothesis was wrong. How did you pivot?",
			"Describe a situation where you had to explain complex statistical concepts to business stakeholders.",
			"Can you share an example of when you had to work with messy or incomplete data?",
			"Tell me about a time when you had to choose between model accuracy and interpretability.",
			"Tell me about a time when you discovered bias in your data or model. How did you address it?",
		],
	},
	"Technical": {
		"Software Engineer": [
			"How would you design a URL shortening service like bit.ly?",
			"Explain the difference between SQL and NoSQL databases. When would you use each?",
			"How would you implement a rate limiter for an API?",
			"What are the trade-offs between microservices and monolithic architecture?",
			"How would you design a chat application that supports millions of users?",
			"Explain how you would optimize a slow database query.",
			"How would you implement caching in a web application?",
			"What are the key considerations when designing a RESTful API?",
			"How would you handle authentication and authorization in a distributed system?",
			"Explain the concept of eventual consistency and when it's acceptable.",
		],
		"Product Manager": [
			"How would you prioritize features for a mobile app with limited development resources?",
			"How would you measure the success of a feature that increases user engagement?",
			"Walk me through your process for creating a product roadmap.",
			"Explain how you would use A/B testing to validate a product hypothesis.",
		],
		"Data Scientist": [
			"Explain the bias-variance tradeoff and how it affects model selection.",
			"How would you evaluate the performance of a classification model with imbalanced classes?",
			"Walk me through your approach to feature engineering for a machine learning model.",
			"How would you handle missing data in a machine learning pipeline?",
		],
	},
	"Case Study": {
		"Software Engineer": [
			"Our mobile app is experiencing slow load times. Walk me through how you would investigate and solve this.",
			"We need to migrate our monolithic application to microservices. How would you approach this?",
			"Our API response times have increased by 200% after a recent deployment. How would you investigate?",
			"Our application needs to handle 10x more traffic during peak hours. How would you scale it?",
		],
		"Product Manager": [
			"Our user engagement has dropped 20% over the past quarter. How would you investigate and address this?",
			"Our main competitor just launched a feature that our users are requesting. How do you respond?",
			"User feedback indicates our onboarding process is confusing. How would you improve it?",
		],
		"Data Scientist": [
			"We want to predict customer churn for our subscription service. Walk me through your approach.",
			"Our fraud detection model has high false positive rates. How would you optimize it?",
			"Our model performance has degraded over time in production. How do you diagnose and fix this?",
		],
	},
}

DEFAULT_ROLE = "Software Engineer"


class QuestionBankProvider:
	def __init__(self, bank: Optional[Dict[str, Dict[str, List[str]]]] = None, *, rng: Optional[random.Random] = None) -> None:
		self.bank = bank or QUESTION_BANK
		self._rng = rng or random.Random()

	def _pool(self, session_type: str, role: str) -> List[str]:
		by_role = self.bank.get(session_type) or self.bank["Behavioral"]
		return by_role.get(role) or by_role.get(DEFAULT_ROLE) or []

	async def fetch_next(self, request: QuestionRequest) -> str:
		asked = {item.question for item in request.history}
		available = [q for q in self._pool(request.session_type, request.role) if q not in asked]
		if not available:
			# Same-type pool exhausted: borrow from the other session types
			for session_type in self.bank:
				available.extend(q for q in self._pool(session_type, request.role) if q not in asked)
		if not available:
			raise ProviderError(503, "No unused questions left in the question bank")
		return self._rng.choice(available)


# ============================================================================
# RETRY + GRACEFUL DEGRADATION
# ============================================================================

class ResilientQuestionProvider:
	def __init__(
		self,
		primary: QuestionProvider,
		*,
		fallback: Optional[QuestionProvider] = None,
		retries: int = 2,
		base_delay: float = 0.8,
		backoff_factor: float = 2.0,
		max_delay: float = 30.0,
		jitter: float = 0.1,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
		rng: Optional[random.Random] = None,
	) -> None:
		self.primary = primary
		self.fallback = fallback
		self.retries = retries
		self.base_delay = base_delay
		self.backoff_factor = backoff_factor
		self.max_delay = max_delay
		self.jitter = jitter
		self._sleep = sleep
		self._rng = rng or random.Random()

	def _delay(self, attempt: int) -> float:
		delay = min(self.base_delay * (self.backoff_factor ** attempt), self.max_delay)
		return delay + delay * self.jitter * self._rng.random()

	async def fetch_next(self, request: QuestionRequest) -> str:
		last_error: Optional[ProviderError] = None
		for attempt in range(self.retries + 1):
			try:
				return await self.primary.fetch_next(request)
			except ProviderError as err:
				last_error = err
				if not err.retryable or attempt == self.retries:
					break
				delay = self._delay(attempt)
				logger.warning(
					"question fetch attempt %d/%d failed (%s); retrying in %.2fs",
					attempt + 1, self.retries + 1, err, delay,
				)
				await self._sleep(delay)
		if self.fallback is None:
			raise last_error or ProviderError(0, "Question provider failed")
		logger.warning("question provider unavailable (%s); using fallback questions", last_error)
		return await self.fallback.fetch_next(request)


def build_question_provider() -> QuestionProvider:
	return ResilientQuestionProvider(
		GeminiQuestionProvider(),
		fallback=QuestionBankProvider() if settings.question_fallback_enabled else None,
		retries=settings.question_fetch_retries,
		base_delay=settings.question_retry_base_delay,
	)
