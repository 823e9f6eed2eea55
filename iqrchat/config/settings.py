"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ─────────────────────────────────────────────────
#
# pydantic-settings reads configuration from two sources (priority order):
#
#   1. Environment variables -- e.g. OPENAI_API_KEY=sk-abc123 (always wins)
#   2. .env file             -- key=value lines in the project root
#
# Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``.  Defaults
# apply when neither source defines a value.  Ingestion tuning knobs
# (chunk size, embed batch size, retry policy) live here too so a deploy
# can adjust them without a code change.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """iqrchat application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === LLM / Embeddings ===
    # Empty string = "not configured"; main.py skips providers without keys.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, etc.)
    openai_chat_model: str = ""  # defaults to gpt-4o
    openai_embedding_model: str = ""  # defaults to text-embedding-3-small
    openai_timeout_seconds: float = 60.0

    # === OCR ===
    mistral_api_key: str = ""
    mistral_base_url: str = "https://api.mistral.ai/v1"
    mistral_ocr_model: str = "mistral-ocr-latest"
    ocr_timeout_seconds: float = 120.0

    # === Blob storage ===
    storage_root: str = "data/blobs"
    storage_targets: list[str] = ["pdfs", "product-pdfs", "documents", "files"]
    storage_signing_secret: str = "change-me"
    signed_url_ttl_seconds: int = 30 * 60

    # === Persistence ===
    ingestion_db_path: str = "data/ingestion.db"
    chat_db_path: str = "data/chat.db"

    # === Ingestion tuning ===
    chunk_size: int = 1000
    chunk_overlap: int = 200
    chunk_tokenizer: str = "bert-base-uncased"  # empty = offline word-level tokenizer
    embed_batch_size: int = 10
    embed_max_workers: int = 5
    embed_max_retries: int = 3
    embed_backoff_seconds: float = 1.0
    embed_timeout_seconds: float = 30.0

    # === Chat ===
    chat_history_limit: int = 20
    product_match_threshold: float = 0.7
    product_match_count: int = 5

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_providers(self) -> list[str]:
        """Return the names of external providers that have credentials configured."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.mistral_api_key:
            providers.append("mistral")
        return providers
