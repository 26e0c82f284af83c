import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, Dict, Any
from pathlib import Path

from ..chunking.budget import ChunkBudget


class Settings(BaseSettings):
    # Context window
    MAX_CONTEXT_TOKENS: int = 128000  # Full context window of the generation service
    ESTIMATED_TOKENS_PER_CHAR: float = 0.25  # Rough estimation: 4 chars per token

    # Response reservation: the largest of these is held back for the reply
    LLM_MAX_TOKENS: int = 4000
    LLM_MAX_TOKENS_QUEST_FLOOR: int = 6000  # Minimum reply size for quest content
    CHUNKING_RESPONSE_TOKENS: int = 10000

    # Prompt and carried-context reservations
    CHUNKING_PROMPT_TOKENS: int = 3000  # Prompt template overhead
    CHUNKING_CONTEXT_SUMMARY_TOKENS: int = 8000  # Summary prepended to chunks after the first

    # Over-budget chunks: "allow" flags them, "error" rejects the result
    CHUNKING_OVERFLOW_POLICY: str = Field(default="allow", pattern="^(allow|error)$")

    # Observability
    LOG_FORMAT: str = "auto"  # json|plain|auto

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def reserved_response_tokens(self) -> int:
        return max(
            self.LLM_MAX_TOKENS,
            self.LLM_MAX_TOKENS_QUEST_FLOOR,
            self.CHUNKING_RESPONSE_TOKENS,
        )

    def chunk_budget(self) -> ChunkBudget:
        """Build the explicit budget handed to the chunker."""
        return ChunkBudget(
            max_context_tokens=self.MAX_CONTEXT_TOKENS,
            reserved_response_tokens=self.reserved_response_tokens,
            reserved_prompt_tokens=self.CHUNKING_PROMPT_TOKENS,
            reserved_context_tokens=self.CHUNKING_CONTEXT_SUMMARY_TOKENS,
            tokens_per_char=self.ESTIMATED_TOKENS_PER_CHAR,
        )

    @classmethod
    def load_config(cls, config_file: Optional[str] = None) -> "Settings":
        """Load settings with config file -> env -> CLI precedence."""
        config_data: Dict[str, Any] = {}

        # Find config file
        if config_file:
            config_path: Optional[Path] = Path(config_file)
        else:
            # Auto-discover .repochunker.{yaml,yml,toml}
            for ext in ["yaml", "yml", "toml"]:
                config_path = Path(f".repochunker.{ext}")
                if config_path.exists():
                    break
            else:
                config_path = None

        if config_path and config_path.exists():
            if config_path.suffix in [".yaml", ".yml"]:
                import yaml  # type: ignore[import-untyped]

                with open(config_path) as f:
                    config_data = yaml.safe_load(f) or {}
            elif config_path.suffix == ".toml":
                import tomllib

                with open(config_path, "rb") as f:
                    config_data = tomllib.load(f)

        # Environment variables win over file values
        env_keys = {key.upper() for key in os.environ}
        config_data = {
            key: value
            for key, value in config_data.items()
            if key.upper() not in env_keys
        }
        return cls(**config_data)


# Default settings - replaced by load_config() during CLI startup
SETTINGS = Settings()
