"""
Configuration module for the repository sync engine.
Loads settings from environment variables or .env file.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from project root (parent of syncengine/ directory)
_project_root = Path(__file__).parent.parent
_env_path = _project_root / ".env"
load_dotenv(_env_path)


class Config:
    """Application configuration."""

    # Database settings
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "./syncengine.db"))

    # GitHub settings
    GITHUB_API_URL: str = os.getenv("GITHUB_API_URL", "https://api.github.com")
    GITHUB_TOKEN: str = os.getenv("GITHUB_TOKEN", "")
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    # Queue settings
    QUEUE_POLL_INTERVAL_MS: int = int(os.getenv("QUEUE_POLL_INTERVAL_MS", "5000"))
    SYNC_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SYNC_SWEEP_INTERVAL_SECONDS", "3600"))
    SHUTDOWN_TIMEOUT_SECONDS: float = float(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "60"))  # Wait for the running job

    # Rate limit settings
    RATE_LIMIT_BUFFER: int = int(os.getenv("RATE_LIMIT_BUFFER", "100"))  # Stop when this many requests left
    MAX_FILE_SIZE_BYTES: int = int(os.getenv("MAX_FILE_SIZE_BYTES", str(50 * 1024)))

    # Chunking settings
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "1500"))
    CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "200"))

    # Embedding settings
    # Supported providers: "openai", "ollama"
    EMBEDDING_PROVIDER: str = os.getenv("EMBEDDING_PROVIDER", "openai")
    EMBED_BATCH_SIZE: int = int(os.getenv("EMBED_BATCH_SIZE", "50"))
    EMBED_BATCH_DELAY_MS: int = int(os.getenv("EMBED_BATCH_DELAY_MS", "100"))

    # OpenAI settings
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    OPENAI_EMBEDDING_MODEL: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")

    # Ollama settings (local models)
    OLLAMA_BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    OLLAMA_EMBEDDING_MODEL: str = os.getenv("OLLAMA_EMBEDDING_MODEL", "nomic-embed-text")

    # Notifications (Discord-compatible webhook)
    NOTIFY_WEBHOOK_URL: str = os.getenv("NOTIFY_WEBHOOK_URL", "")

    # API settings
    API_HOST: str = os.getenv("API_HOST", "127.0.0.1")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    ENGINE_API_KEY: str = os.getenv("ENGINE_API_KEY", "")  # Required for authenticated endpoints
    # When false, GET status routes stay open and only job-queueing routes need the key
    API_KEY_PROTECTS_READS: bool = os.getenv("API_KEY_PROTECTS_READS", "true").lower() == "true"
    CORS_ORIGINS: list[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if origin.strip()
    ]

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Validate pipeline configuration."""
        if cls.CHUNK_SIZE <= 0:
            raise ValueError(f"CHUNK_SIZE must be positive. Got: {cls.CHUNK_SIZE}")
        if cls.CHUNK_OVERLAP < 0:
            raise ValueError(f"CHUNK_OVERLAP must not be negative. Got: {cls.CHUNK_OVERLAP}")
        if cls.CHUNK_OVERLAP >= cls.CHUNK_SIZE:
            raise ValueError(
                f"CHUNK_OVERLAP must be smaller than CHUNK_SIZE. "
                f"Got overlap={cls.CHUNK_OVERLAP}, size={cls.CHUNK_SIZE}"
            )
        if cls.EMBED_BATCH_SIZE <= 0:
            raise ValueError(f"EMBED_BATCH_SIZE must be positive. Got: {cls.EMBED_BATCH_SIZE}")
        if cls.QUEUE_POLL_INTERVAL_MS <= 0:
            raise ValueError(
                f"QUEUE_POLL_INTERVAL_MS must be positive. Got: {cls.QUEUE_POLL_INTERVAL_MS}"
            )
        # Provider credentials are checked when the provider is first built
        if cls.EMBEDDING_PROVIDER.lower() not in ("openai", "ollama"):
            raise ValueError(
                f"EMBEDDING_PROVIDER must be one of: openai, ollama. "
                f"Got: {cls.EMBEDDING_PROVIDER}"
            )

    @classmethod
    def validate_embedding_config(cls) -> None:
        """Validate embedding provider configuration."""
        provider = cls.EMBEDDING_PROVIDER.lower()

        if provider not in ("openai", "ollama"):
            raise ValueError(
                f"EMBEDDING_PROVIDER must be one of: openai, ollama. "
                f"Got: {provider}"
            )

        if provider == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError("OPENAI_API_KEY must be set when using OpenAI provider")

    @classmethod
    def get_github_token(cls, credential_id: str) -> str:
        """
        Resolve the API token for a credential.

        A per-credential ``GITHUB_TOKEN_<ID>`` variable wins over the
        shared ``GITHUB_TOKEN``.
        """
        env_key = f"GITHUB_TOKEN_{str(credential_id).upper().replace('-', '_')}"
        return os.getenv(env_key, cls.GITHUB_TOKEN)


# Singleton config instance
config = Config()
