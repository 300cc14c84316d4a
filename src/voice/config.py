"""
Configuration management for the dashboard voice assistant.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)

CAPTURE_PROVIDERS = ("remote", "deepgram")
TTS_PROVIDERS = ("elevenlabs", "openai")
ASSISTANT_PROVIDERS = ("dashboard", "openai")

DEFAULT_WELCOME_MESSAGE = (
    "Hi! I'm your assistant with access to your dashboard. "
    "Ask me to plan your day, review your goals or add a task."
)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    port: int = 7860
    log_level: str = "INFO"

    # Turn-taking
    # - silence_commit_ms: quiet period after the last fragment before an utterance is committed
    # - continuous_restart_delay_ms: pause between playback end and re-arming capture
    # - playback_ack_timeout_seconds: longest wait for the client to report a clip finished (0 waits forever)
    silence_commit_ms: int = 10_000
    continuous_restart_delay_ms: int = 0
    playback_ack_timeout_seconds: float = 120.0
    voice_enabled_default: bool = True

    # Capture (STT)
    capture_provider: str = "remote"  # "remote" | "deepgram"
    capture_language: str = "en-US"
    deepgram_api_key: str = ""
    deepgram_model: str = "nova-2"

    # Synthesis (TTS)
    # - tts_primary is tried first; tts_fallback is used once if the primary fails
    tts_primary: str = "elevenlabs"
    tts_fallback: str = "openai"  # "openai" | "elevenlabs" | "none"
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = ""
    elevenlabs_model: str = "eleven_monolingual_v1"
    elevenlabs_timeout_seconds: float = 15.0
    openai_api_key: str = ""
    openai_tts_model: str = "tts-1"
    openai_tts_voice: str = "alloy"

    # Assistant
    assistant_provider: str = "dashboard"  # "dashboard" | "openai"
    assistant_url: str = "http://localhost:3000/api/chat"
    assistant_timeout_seconds: float = 120.0
    openai_model: str = "gpt-4o-mini"
    max_history_turns: int = 20
    welcome_message: str = DEFAULT_WELCOME_MESSAGE

    @property
    def tts_fallback_enabled(self) -> bool:
        return self.tts_fallback not in ("", "none")

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if self.capture_provider not in CAPTURE_PROVIDERS:
            raise ConfigError(
                f"Invalid CAPTURE_PROVIDER '{self.capture_provider}'. "
                f"Expected one of: {', '.join(CAPTURE_PROVIDERS)}."
            )
        if self.tts_primary not in TTS_PROVIDERS:
            raise ConfigError(
                f"Invalid TTS_PRIMARY '{self.tts_primary}'. "
                f"Expected one of: {', '.join(TTS_PROVIDERS)}."
            )
        if self.tts_fallback_enabled and self.tts_fallback not in TTS_PROVIDERS:
            raise ConfigError(
                f"Invalid TTS_FALLBACK '{self.tts_fallback}'. "
                f"Expected one of: {', '.join(TTS_PROVIDERS)} or 'none'."
            )
        if self.assistant_provider not in ASSISTANT_PROVIDERS:
            raise ConfigError(
                f"Invalid ASSISTANT_PROVIDER '{self.assistant_provider}'. "
                f"Expected one of: {', '.join(ASSISTANT_PROVIDERS)}."
            )
        if self.silence_commit_ms <= 0:
            raise ConfigError("SILENCE_COMMIT_MS must be positive.")

        if self.capture_provider == "deepgram" and not self.deepgram_api_key:
            missing.append("DEEPGRAM_API_KEY")

        tts_in_use = {self.tts_primary}
        if self.tts_fallback_enabled:
            tts_in_use.add(self.tts_fallback)
        if "elevenlabs" in tts_in_use and not self.elevenlabs_api_key:
            missing.append("ELEVENLABS_API_KEY")
        needs_openai = "openai" in tts_in_use or self.assistant_provider == "openai"
        if needs_openai and not self.openai_api_key:
            missing.append("OPENAI_API_KEY")

        if self.assistant_provider == "dashboard" and not self.assistant_url:
            missing.append("ASSISTANT_URL")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            port=self.port,
            log_level=self.log_level,
            silence_commit_ms=self.silence_commit_ms,
            continuous_restart_delay_ms=self.continuous_restart_delay_ms,
            playback_ack_timeout_seconds=self.playback_ack_timeout_seconds,
            voice_enabled_default=self.voice_enabled_default,
            capture_provider=self.capture_provider,
            capture_language=self.capture_language,
            tts_primary=self.tts_primary,
            tts_fallback=self.tts_fallback,
            assistant_provider=self.assistant_provider,
            assistant_url=self.assistant_url,
            llm_model=self.openai_model if self.assistant_provider == "openai" else None,
            max_history_turns=self.max_history_turns,
            deepgram_key_set=bool(self.deepgram_api_key),
            elevenlabs_key_set=bool(self.elevenlabs_api_key),
            openai_key_set=bool(self.openai_api_key),
        )


def _get_bool(key: str, default: bool = False) -> bool:
    """Get a boolean from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    config = Config(
        # Server
        port=_get_int("PORT", 7860),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # Turn-taking
        silence_commit_ms=_get_int("SILENCE_COMMIT_MS", 10_000),
        continuous_restart_delay_ms=_get_int("CONTINUOUS_RESTART_DELAY_MS", 0),
        playback_ack_timeout_seconds=_get_float("PLAYBACK_ACK_TIMEOUT_SECONDS", 120.0),
        voice_enabled_default=_get_bool("VOICE_ENABLED_DEFAULT", True),

        # Capture
        capture_provider=os.getenv("CAPTURE_PROVIDER", "remote").strip().lower(),
        capture_language=os.getenv("CAPTURE_LANGUAGE", "en-US"),
        deepgram_api_key=os.getenv("DEEPGRAM_API_KEY", ""),
        deepgram_model=os.getenv("DEEPGRAM_MODEL", "nova-2"),

        # Synthesis
        tts_primary=os.getenv("TTS_PRIMARY", "elevenlabs").strip().lower(),
        tts_fallback=os.getenv("TTS_FALLBACK", "openai").strip().lower(),
        elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", "").strip(),
        elevenlabs_voice_id=os.getenv("ELEVENLABS_VOICE_ID", "").strip(),
        elevenlabs_model=os.getenv("ELEVENLABS_MODEL", "eleven_monolingual_v1"),
        elevenlabs_timeout_seconds=_get_float("ELEVENLABS_TIMEOUT_SECONDS", 15.0),
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        openai_tts_model=os.getenv("OPENAI_TTS_MODEL", "tts-1"),
        openai_tts_voice=os.getenv("OPENAI_TTS_VOICE", "alloy").strip().lower(),

        # Assistant
        assistant_provider=os.getenv("ASSISTANT_PROVIDER", "dashboard").strip().lower(),
        assistant_url=os.getenv("ASSISTANT_URL", "http://localhost:3000/api/chat"),
        assistant_timeout_seconds=_get_float("ASSISTANT_TIMEOUT_SECONDS", 120.0),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        max_history_turns=_get_int("MAX_HISTORY_TURNS", 20),
        welcome_message=os.getenv("WELCOME_MESSAGE", DEFAULT_WELCOME_MESSAGE),
    )

    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
