"""Settings and API key management."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

CONFIG_DIR = Path.home() / ".lessonplay"
CONFIG_FILE = CONFIG_DIR / "config.json"

# Gemini models
SCRIPT_MODEL = "gemini-3-flash-preview"
IMAGE_MODEL = "gemini-2.5-flash-image"
TTS_MODEL = "gemini-2.5-flash-preview-tts"

# Gemini TTS returns raw 24kHz PCM mono 16-bit
PCM_SAMPLE_RATE = 24000
PCM_CHANNELS = 1

# Narrator voices (Gemini prebuilt voices)
VOICES = ["Puck", "Charon", "Kore", "Fenrir", "Aoede"]
DEFAULT_VOICE = "Puck"

# Playback
AUTO_ADVANCE_DELAY = 0.5  # seconds between end of narration and next slide

# Placeholder image dimensions (16:9)
PLACEHOLDER_WIDTH = 1280
PLACEHOLDER_HEIGHT = 720


@dataclass
class Config:
    gemini_api_key: str = ""
    voice: str = DEFAULT_VOICE
    script_model: str = SCRIPT_MODEL
    image_model: str = IMAGE_MODEL
    tts_model: str = TTS_MODEL
    sample_rate: int = PCM_SAMPLE_RATE
    request_timeout: float | None = None  # per provider call, seconds

    @classmethod
    def load(cls) -> "Config":
        """Load config from env vars then config file."""
        cfg = cls()

        # Env var takes priority
        api_key = (
            os.environ.get("GEMINI_API_KEY")
            or os.environ.get("GOOGLE_API_KEY")
            or os.environ.get("API_KEY", "")
        )

        # Fall back to config file
        if CONFIG_FILE.exists():
            try:
                data = json.loads(CONFIG_FILE.read_text(encoding="utf-8-sig"))
                if not api_key:
                    api_key = data.get("gemini_api_key", "")
                if (voice := data.get("voice")) in VOICES:
                    cfg.voice = voice
                if sm := data.get("script_model"):
                    cfg.script_model = sm
                if im := data.get("image_model"):
                    cfg.image_model = im
                if tm := data.get("tts_model"):
                    cfg.tts_model = tm
                if data.get("request_timeout") is not None:
                    cfg.request_timeout = float(data["request_timeout"])
            except (json.JSONDecodeError, OSError, TypeError, ValueError):
                pass

        cfg.gemini_api_key = api_key
        return cfg

    def save(self) -> None:
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        data = {
            "gemini_api_key": self.gemini_api_key,
            "voice": self.voice,
            "script_model": self.script_model,
            "image_model": self.image_model,
            "tts_model": self.tts_model,
        }
        if self.request_timeout is not None:
            data["request_timeout"] = self.request_timeout
        CONFIG_FILE.write_text(json.dumps(data, indent=2))
