from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash-lite", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	gemini_timeout_seconds: float = Field(default=30.0, validation_alias="GEMINI_TIMEOUT_SECONDS")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Interview Coach", validation_alias="OPENROUTER_TITLE")

	# Tokens are issued by the external auth service; we only verify them
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")

	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Interview session engine
	max_questions: int = Field(default=10, ge=1, le=20, validation_alias="INTERVIEW_MAX_QUESTIONS")
	answer_max_length: int = Field(default=2000, ge=1, validation_alias="ANSWER_MAX_LENGTH")
	# 0 disables the background autosave loop (drafts are still written on explicit saves)
	autosave_interval_seconds: float = Field(default=30.0, ge=0, validation_alias="AUTOSAVE_INTERVAL_SECONDS")
	question_fetch_retries: int = Field(default=2, ge=0, validation_alias="QUESTION_FETCH_RETRIES")
	question_retry_base_delay: float = Field(default=0.8, ge=0, validation_alias="QUESTION_RETRY_BASE_DELAY")
	question_fallback_enabled: bool = Field(default=True, validation_alias="QUESTION_FALLBACK_ENABLED")
	speech_continuous: bool = Field(default=True, validation_alias="SPEECH_CONTINUOUS")

	draft_retention_days: int = Field(default=7, ge=1, validation_alias="DRAFT_RETENTION_DAYS")
	controller_idle_seconds: int = Field(default=1800, ge=60, validation_alias="CONTROLLER_IDLE_SECONDS")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
