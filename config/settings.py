"""Application settings — all configuration loaded from environment variables.

Usage:
    from config.settings import Settings
    settings = Settings()
    settings.validate()   # raises ValueError if ANTHROPIC_API_KEY is missing
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass
class Settings:
    """Centralised application configuration.

    All values are read from environment variables at instantiation time
    so that tests can override them by patching ``os.environ``.
    """

    # ── API Keys ────────────────────────────────────────────────────────────
    anthropic_api_key: str = field(
        default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", "")
    )

    # ── Flask ───────────────────────────────────────────────────────────────
    debug: bool = field(
        default_factory=lambda: os.environ.get("FLASK_DEBUG", "0") == "1"
    )
    port: int = field(
        default_factory=lambda: int(os.environ.get("PORT", "5001"))
    )

    # ── Intake flow ─────────────────────────────────────────────────────────
    #: Quiescence window before typed input is interpreted.
    debounce_ms: int = field(
        default_factory=lambda: int(os.environ.get("DEBOUNCE_MS", "800"))
    )
    #: Shortest trimmed input that triggers an interpretation.
    min_input_length: int = field(
        default_factory=lambda: int(os.environ.get("MIN_INPUT_LENGTH", "3"))
    )

    # ── Collaborator services ───────────────────────────────────────────────
    #: Base URL serving ``/api/interpret`` and ``/api/radars``.
    service_url: str = field(
        default_factory=lambda: os.environ.get(
            "RADAR_SERVICE_URL", "http://localhost:5001"
        )
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "30"))
    )

    # ── AI Models ───────────────────────────────────────────────────────────
    #: Fast model used for the streaming interpretation pass.
    interpret_model: str = "claude-haiku-4-5"

    @property
    def debounce_seconds(self) -> float:
        """The debounce window in seconds, as asyncio timers expect it."""
        return self.debounce_ms / 1000

    def validate(self) -> None:
        """Raise ``ValueError`` if any required setting is missing."""
        if not self.anthropic_api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY environment variable is not set. "
                "Copy .env.example to .env and add your key."
            )
