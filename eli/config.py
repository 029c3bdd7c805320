"""
Configuration
--------------
Settings come from two places:

  config/config.yaml   -- non-secret tuning (models, limits, paths, contact)
  .env / environment   -- secrets (OPENAI_API_KEY, SUPABASE_URL, SUPABASE_ANON_KEY)

Every YAML key has a default, so the assistant starts with a working
configuration even when the file is missing.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_CONFIG_PATH = "config/config.yaml"


class ProjectSettings(BaseModel):
    assistant_name: str = "Eli"
    organisation: str = "Solveway"
    home_url: str = "https://solveway.co.uk"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: str = "logs/eli.log"


class ModelSettings(BaseModel):
    chat_model: str = "gpt-4o"
    embedding_model: str = "text-embedding-3-small"
    dimensions: int = 1536
    temperature: float = 0.3
    max_tokens: int = 1024
    max_tool_steps: int = 5


class RetrievalSettings(BaseModel):
    top_k: int = 50


class RecommendationSettings(BaseModel):
    route_source_type: str = "route"
    min_sources: int = 2
    max_items: int = 3
    description_chars: int = 150


class RateLimitSettings(BaseModel):
    limit: int = 10
    window_ms: int = 60_000


class StorageSettings(BaseModel):
    data_dir: str = "data/eli"


class StaticToken(BaseModel):
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    employers: Optional[list[str]] = None


class AuthSettings(BaseModel):
    provider: Literal["static", "supabase"] = "static"
    static_tokens: dict[str, StaticToken] = Field(default_factory=dict)
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None


class ContactSettings(BaseModel):
    phone: str = "0800 123 4567"
    email: str = "advisor@solveway.co.uk"
    website: str = "https://solveway.co.uk"


class ServerSettings(BaseModel):
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseModel):
    project: ProjectSettings = Field(default_factory=ProjectSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    models: ModelSettings = Field(default_factory=ModelSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    recommendations: RecommendationSettings = Field(default_factory=RecommendationSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    contact: ContactSettings = Field(default_factory=ContactSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


def load_settings(path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML (path arg > $ELI_CONFIG > config/config.yaml).

    Supabase credentials are always taken from the environment when set.
    """
    config_path = Path(path or os.getenv("ELI_CONFIG", DEFAULT_CONFIG_PATH))

    raw: dict = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        logger.debug(f"[Config] Loaded {config_path}")
    else:
        logger.warning(f"[Config] {config_path} not found - using defaults")

    settings = Settings.model_validate(raw)

    if os.getenv("SUPABASE_URL"):
        settings.auth.supabase_url = os.environ["SUPABASE_URL"]
    if os.getenv("SUPABASE_ANON_KEY"):
        settings.auth.supabase_anon_key = os.environ["SUPABASE_ANON_KEY"]

    return settings
