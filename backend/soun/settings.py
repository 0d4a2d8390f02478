from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
	openai_model: str = Field(default="gpt-4o", validation_alias="OPENAI_MODEL")
	openai_base_url: str = Field(default="https://api.openai.com/v1/chat/completions", validation_alias="OPENAI_BASE_URL")
	openai_timeout: float = Field(default=30.0, validation_alias="OPENAI_TIMEOUT")

	# Optional OpenAI-compatible fallback (e.g. OpenRouter)
	llm_fallback_api_key: str | None = Field(default=None, validation_alias="LLM_FALLBACK_API_KEY")
	llm_fallback_model: str = Field(default="openai/gpt-4o-mini", validation_alias="LLM_FALLBACK_MODEL")
	llm_fallback_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="LLM_FALLBACK_BASE_URL")

	# Auth
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=60 * 24 * 7, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Uploads
	upload_dir: str = Field(default="uploads", validation_alias="UPLOAD_DIR")
	max_upload_mb: int = Field(default=50, validation_alias="MAX_UPLOAD_MB")

	# In-memory practice sessions
	session_ttl_minutes: int = Field(default=120, validation_alias="SESSION_TTL_MINUTES")
	max_live_sessions: int = Field(default=1000, validation_alias="MAX_LIVE_SESSIONS")
	cleanup_interval_seconds: int = Field(default=60 * 60, validation_alias="CLEANUP_INTERVAL_SECONDS")

	# Logging
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	log_dir: str | None = Field(default=None, validation_alias="LOG_DIR")

	cors_origins: str = Field(default="*", validation_alias="CORS_ORIGINS")

	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def max_upload_bytes(self) -> int:
		return self.max_upload_mb * 1024 * 1024

settings = Settings()
