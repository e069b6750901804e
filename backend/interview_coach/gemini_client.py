from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, Optional
from .settings import settings


logger = logging.getLogger(__name__)


class GeminiError(Exception):
	"""Generation failed; ``status`` is the upstream HTTP status, 0 for transport errors."""

	def __init__(self, status: int, message: str) -> None:
		super().__init__(f"{status}: {message}")
		self.status = status
		self.message = message


class GeminiClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		if settings.openrouter_api_key:
			self._fallback_client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)

	async def __aenter__(self) -> "GeminiClient":
		return self

	async def __aexit__(self, *exc_info: Any) -> None:
		await self.aclose()

	async def generate(self, prompt: str) -> str:
		try:
			return await self._generate_primary(prompt)
		except GeminiError as primary_error:
			if self._fallback_client is None:
				raise
			logger.warning("Gemini call failed (%s); trying OpenRouter", primary_error)
			return await self._generate_fallback(prompt, primary_error)

	async def _generate_primary(self, prompt: str) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise GeminiError(http_err.response.status_code, http_err.response.text[:500]) from http_err
		except httpx.RequestError as net_err:
			raise GeminiError(0, f"Network error talking to Gemini: {net_err}") from net_err
		try:
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise GeminiError(502, f"Unexpected Gemini response: {r.text[:500]}") from err

	async def _generate_fallback(self, prompt: str, primary_error: GeminiError) -> str:
		headers = {
			"Authorization": f"Bearer {settings.openrouter_api_key}",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		payload: Dict[str, Any] = {
			"model": settings.openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		try:
			r = await self._fallback_client.post(settings.openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except httpx.HTTPStatusError as http_err:
			status = http_err.response.status_code
		except (httpx.RequestError, ValueError, KeyError, IndexError, TypeError):
			status = 0 if primary_error.status == 0 else 502
		raise GeminiError(status, f"Gemini primary call failed ({primary_error.message}); fallback via OpenRouter also failed")

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()
