from typing import Any, Dict, List

from pydantic_settings import BaseSettings


DEFAULT_AX_MODELS: List[Dict[str, Any]] = [
    {
        "model_id": "gpt",
        "display_name": "GPT-4o",
        "provider": "openai",
        "provider_model_id": "openai/gpt-4o",
        "sort_order": 1,
    },
    {
        "model_id": "claude",
        "display_name": "Claude Sonnet 4",
        "provider": "anthropic",
        "provider_model_id": "anthropic/claude-sonnet-4",
        "sort_order": 2,
    },
    {
        "model_id": "gemini",
        "display_name": "Gemini 2.5 Pro",
        "provider": "google",
        "provider_model_id": "google/gemini-2.5-pro",
        "sort_order": 3,
    },
    {
        "model_id": "grok",
        "display_name": "Grok 3",
        "provider": "xai",
        "provider_model_id": "x-ai/grok-3",
        "sort_order": 4,
    },
]

DEFAULT_CREDIT_PACKS: Dict[str, Dict[str, Any]] = {
    "starter": {"name": "Solo", "credits": 500, "price": 149900},
    "pro": {"name": "Business Pro", "credits": 1000, "price": 199900},
    "agency": {"name": "Large Business", "credits": 2000, "price": 299900},
}


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+psycopg://user:password@db/dbname"
    LOG_LEVEL: str = "INFO"

    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/0"
    EVALUATION_TASK_NAME: str = "evaluation.run_product_evaluation"
    EVALUATION_QUEUE: str = "evaluations"
    DISPATCH_TIMEOUT_SECONDS: float = 10.0

    OPINION_PROVIDER: str = "openrouter"
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_APP_URL: str = "http://localhost:3000"
    OPINION_TIMEOUT_SECONDS: float = 120.0
    OPINION_MAX_OUTPUT_TOKENS: int = 4000
    AX_MODELS: List[Dict[str, Any]] = DEFAULT_AX_MODELS

    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"

    ADMIN_EMAIL: str = "admin@example.com"
    DEFAULT_CREDITS: int = 0
    ADMIN_INITIAL_CREDITS: int = 1000

    WORKER_CALLBACK_TOKEN: str = ""
    PAYMENT_WEBHOOK_SECRET: str = ""

    VOUCHER_RATE_LIMIT_ATTEMPTS: int = 5
    VOUCHER_RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    TRUST_PROXY_HEADERS: bool = False

    CREDIT_PACKS: Dict[str, Dict[str, Any]] = DEFAULT_CREDIT_PACKS

    class Config:
        env_file = ".env"

settings = Settings()
