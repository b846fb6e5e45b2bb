"""Configuration settings for the voice agent."""

import os
from pathlib import Path
from typing import Optional, Dict, Any, Union, List
from dataclasses import dataclass, field
import json
import structlog
from dotenv import load_dotenv
import threading


logger = structlog.get_logger()


DEFAULT_WELCOME_MESSAGE = "Hello! I am ready to help. How can I assist you today?"


@dataclass
class ServerSettings:
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class CredentialSettings:
    """Provider credentials. A missing credential disables that provider."""
    gemini_api_key: Optional[str] = field(default=None, repr=False)
    openai_api_key: Optional[str] = field(default=None, repr=False)
    elevenlabs_api_key: Optional[str] = field(default=None, repr=False)


@dataclass
class ProviderSettings:
    """Provider-specific settings."""
    # Completion providers, tried in this order
    completion_order: List[str] = field(default_factory=lambda: ["gemini", "openai"])

    # Gemini
    gemini_model: str = "gemini-1.5-flash"
    gemini_temperature: float = 0.7
    gemini_max_tokens: int = 1024

    # OpenAI
    openai_model: str = "gpt-4o-mini"
    openai_max_tokens: int = 150
    openai_base_url: str = "https://api.openai.com/v1"

    # WhisperKit
    whisperkit_path: str = "whisperkit-cli"
    whisperkit_model: str = "large-v3_turbo"
    whisperkit_compute_units: str = "cpuAndNeuralEngine"

    # ElevenLabs
    elevenlabs_voice_id: str = "pNInz6obpgDQGcFmaJgB"  # Adam voice
    elevenlabs_model_id: str = "eleven_flash_v2_5"
    elevenlabs_output_format: str = "mp3_22050_32"


@dataclass
class TimeoutSettings:
    """Timeout settings for various operations."""
    provider_timeout: float = 30.0  # seconds, per completion attempt
    chat_request_timeout: float = 30.0  # seconds, client -> server
    no_speech_timeout: float = 8.0  # seconds before capture gives up


@dataclass
class ClientSettings:
    """Voice client settings."""
    server_url: str = "http://localhost:3001"
    rearm_delay_ms: int = 200
    debug_log_size: int = 3
    welcome_message: str = DEFAULT_WELCOME_MESSAGE


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = "INFO"
    format: str = "json"
    file_enabled: bool = False
    file_rotation_mb: int = 10
    file_backup_count: int = 7


class Settings:
    """Main settings class for the voice agent."""

    def __init__(self, config_file: Optional[Union[str, Path]] = None,
                 load_env_file: bool = True):
        self.config_file = Path(config_file) if config_file else None
        self._lock = threading.RLock()
        self._env_loaded = False

        # Initialize sub-settings
        self.server = ServerSettings()
        self.credentials = CredentialSettings()
        self.providers = ProviderSettings()
        self.timeouts = TimeoutSettings()
        self.client = ClientSettings()
        self.logging = LoggingSettings()

        # Load .env file first
        if load_env_file:
            self._load_env_file()

        # Load from file if provided
        if self.config_file and self.config_file.exists():
            self.load_from_file()

        # Override with environment variables
        self.load_from_env()

    def _load_env_file(self) -> None:
        """Load environment variables from .env file."""
        if not self._env_loaded:
            # Look for .env in current directory and parent directories
            current_dir = Path.cwd()
            for parent in [current_dir] + list(current_dir.parents):
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    logger.debug("Loaded .env file", path=str(env_file))
                    break
            self._env_loaded = True

    def load_from_file(self) -> None:
        """Load settings from a JSON configuration file."""
        if not self.config_file or not self.config_file.exists():
            return

        try:
            with self._lock:
                with open(self.config_file, 'r') as f:
                    config = json.load(f)

                sections = {
                    "server": self.server,
                    "providers": self.providers,
                    "timeouts": self.timeouts,
                    "client": self.client,
                    "logging": self.logging,
                }
                for name, target in sections.items():
                    for key, value in config.get(name, {}).items():
                        if hasattr(target, key):
                            setattr(target, key, value)

                logger.info("Loaded settings from file", file=str(self.config_file))

        except Exception as e:
            logger.error("Failed to load settings from file",
                        file=str(self.config_file),
                        error=str(e))

    def load_from_env(self) -> None:
        """Load settings from environment variables."""
        with self._lock:
            # Credentials, read once at process start
            self.credentials.gemini_api_key = (
                os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or None
            )
            self.credentials.openai_api_key = os.getenv("OPENAI_API_KEY") or None
            self.credentials.elevenlabs_api_key = os.getenv("ELEVENLABS_API_KEY") or None

            # Server
            if os.getenv("PORT"):
                self.server.port = int(os.getenv("PORT"))
            if os.getenv("HOST"):
                self.server.host = os.getenv("HOST")
            if os.getenv("CORS_ORIGINS"):
                self.server.cors_origins = _split_list(os.getenv("CORS_ORIGINS"))

            # Provider overrides
            if os.getenv("COMPLETION_PROVIDERS"):
                self.providers.completion_order = _split_list(os.getenv("COMPLETION_PROVIDERS"))
            if os.getenv("GEMINI_MODEL"):
                self.providers.gemini_model = os.getenv("GEMINI_MODEL")
            if os.getenv("GEMINI_TEMPERATURE"):
                self.providers.gemini_temperature = float(os.getenv("GEMINI_TEMPERATURE"))
            if os.getenv("OPENAI_MODEL"):
                self.providers.openai_model = os.getenv("OPENAI_MODEL")
            if os.getenv("OPENAI_MAX_TOKENS"):
                self.providers.openai_max_tokens = int(os.getenv("OPENAI_MAX_TOKENS"))
            if os.getenv("OPENAI_BASE_URL"):
                self.providers.openai_base_url = os.getenv("OPENAI_BASE_URL")
            if os.getenv("WHISPERKIT_PATH"):
                self.providers.whisperkit_path = os.getenv("WHISPERKIT_PATH")
            if os.getenv("WHISPERKIT_MODEL"):
                self.providers.whisperkit_model = os.getenv("WHISPERKIT_MODEL")
            if os.getenv("ELEVENLABS_VOICE_ID"):
                self.providers.elevenlabs_voice_id = os.getenv("ELEVENLABS_VOICE_ID")

            # Timeout overrides
            if os.getenv("PROVIDER_TIMEOUT"):
                self.timeouts.provider_timeout = float(os.getenv("PROVIDER_TIMEOUT"))
            if os.getenv("CHAT_REQUEST_TIMEOUT"):
                self.timeouts.chat_request_timeout = float(os.getenv("CHAT_REQUEST_TIMEOUT"))

            # Client
            if os.getenv("VOICE_AGENT_SERVER_URL"):
                self.client.server_url = os.getenv("VOICE_AGENT_SERVER_URL")
            if os.getenv("REARM_DELAY_MS"):
                self.client.rearm_delay_ms = int(os.getenv("REARM_DELAY_MS"))

            # Logging settings
            if os.getenv("LOG_LEVEL"):
                self.logging.level = os.getenv("LOG_LEVEL")
            if os.getenv("LOG_FORMAT"):
                self.logging.format = os.getenv("LOG_FORMAT")
            if os.getenv("LOG_FILE_ENABLED"):
                self.logging.file_enabled = os.getenv("LOG_FILE_ENABLED").lower() == "true"

    def get_provider_config(self, provider_type: str) -> Dict[str, Any]:
        """Get constructor arguments for a specific provider."""
        if provider_type == "gemini":
            return {
                "api_key": self.credentials.gemini_api_key,
                "model_name": self.providers.gemini_model,
                "temperature": self.providers.gemini_temperature,
                "max_output_tokens": self.providers.gemini_max_tokens,
                "timeout": self.timeouts.provider_timeout,
            }
        elif provider_type == "openai":
            return {
                "api_key": self.credentials.openai_api_key,
                "model": self.providers.openai_model,
                "max_tokens": self.providers.openai_max_tokens,
                "base_url": self.providers.openai_base_url,
                "timeout": self.timeouts.provider_timeout,
            }
        elif provider_type == "whisperkit":
            return {
                "whisperkit_path": self.providers.whisperkit_path,
                "model": self.providers.whisperkit_model,
                "compute_units": self.providers.whisperkit_compute_units,
                "no_speech_timeout": self.timeouts.no_speech_timeout,
            }
        elif provider_type == "elevenlabs":
            return {
                "api_key": self.credentials.elevenlabs_api_key,
                "voice_id": self.providers.elevenlabs_voice_id,
                "model_id": self.providers.elevenlabs_model_id,
                "output_format": self.providers.elevenlabs_output_format,
            }
        else:
            raise ValueError(f"Unknown provider type: {provider_type}")

    def validate(self) -> list[str]:
        """Validate current settings and return list of issues."""
        issues = []

        if not 0 < self.server.port < 65536:
            issues.append(f"Invalid port: {self.server.port}")

        if self.timeouts.provider_timeout <= 0:
            issues.append(f"Invalid provider timeout: {self.timeouts.provider_timeout}")
        if self.timeouts.chat_request_timeout <= 0:
            issues.append(f"Invalid chat request timeout: {self.timeouts.chat_request_timeout}")
        if self.client.rearm_delay_ms < 0:
            issues.append(f"Invalid rearm delay: {self.client.rearm_delay_ms}")
        if self.client.debug_log_size < 1:
            issues.append(f"Invalid debug log size: {self.client.debug_log_size}")

        for name in self.providers.completion_order:
            if name not in ("gemini", "openai"):
                issues.append(f"Unknown completion provider: {name}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for display. Credentials are reduced to flags."""
        return {
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "cors_origins": list(self.server.cors_origins),
            },
            "credentials": {
                "gemini": self.credentials.gemini_api_key is not None,
                "openai": self.credentials.openai_api_key is not None,
                "elevenlabs": self.credentials.elevenlabs_api_key is not None,
            },
            "providers": {
                "completion_order": list(self.providers.completion_order),
                "gemini_model": self.providers.gemini_model,
                "openai_model": self.providers.openai_model,
                "openai_max_tokens": self.providers.openai_max_tokens,
                "whisperkit_model": self.providers.whisperkit_model,
                "elevenlabs_voice_id": self.providers.elevenlabs_voice_id,
            },
            "timeouts": {
                "provider_timeout": self.timeouts.provider_timeout,
                "chat_request_timeout": self.timeouts.chat_request_timeout,
                "no_speech_timeout": self.timeouts.no_speech_timeout,
            },
            "client": {
                "server_url": self.client.server_url,
                "rearm_delay_ms": self.client.rearm_delay_ms,
                "debug_log_size": self.client.debug_log_size,
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
                "file_enabled": self.logging.file_enabled,
            },
        }


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# Global settings instance
settings = Settings()
