"""
typedapi — Application Configuration
=====================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by the server, the dispatcher, the multipart reader and the client.
When:  Loaded once at module import time.

Every value has a default that runs the Greetings tutorial locally
(http://localhost:3001, the port used by the tutorial walkthrough).
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes are grouped by concern. Environment names are the upper-case
    field names (HOST, PORT, HANDLER_TIMEOUT_SECONDS, ...).
    """

    # ── Server ────────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001, ge=1, le=65535)

    # What: Controls verbosity of application logging
    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated URLs, "*" allows any origin
    cors_origins: str = Field(default="*")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Documentation ─────────────────────────────────────────────────────
    # What: Where the generated OpenAPI document and the Swagger UI page live
    # Empty string disables the route
    docs_path: str = Field(default="/docs")
    openapi_path: str = Field(default="/openapi.json")

    # ── Multipart Uploads ─────────────────────────────────────────────────
    # What: Directory receiving streamed file parts for the lifetime of a request
    upload_root: str = Field(default="./uploads")

    # What: Maximum size of a single uploaded file part in bytes
    # Default: 10MB = 10 * 1024 * 1024
    max_upload_size: int = Field(default=10_485_760, ge=1)

    # What: Bytes read from the request stream per write to disk
    upload_chunk_size: int = Field(default=64 * 1024, ge=1024)

    # ── Handler Execution ─────────────────────────────────────────────────
    # What: Upper bound on a single handler invocation, in seconds
    # 0 disables the bound: a handler that never completes keeps its
    # request (and its uploaded files) open until the client disconnects
    handler_timeout_seconds: float = Field(default=30.0, ge=0)

    # ── Client ────────────────────────────────────────────────────────────
    client_base_url: str = Field(default="http://localhost:3001")
    client_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton instance — imported throughout the package
settings = Settings()
