import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from dotenv import load_dotenv


# Load .env once at import time (support running from any cwd)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


@dataclass(frozen=True)
class Settings:
    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # STUN/TURN
    STUN_SERVER: str | None = os.getenv("STUN_SERVER")
    TURN_URL: str | None = os.getenv("TURN_URL")
    TURN_USERNAME: str | None = os.getenv("TURN_USERNAME")
    TURN_PASSWORD: str | None = os.getenv("TURN_PASSWORD")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./chatcall.db")

    # Call client
    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "http://localhost:8000")
    POLL_INTERVAL: float = float(os.getenv("POLL_INTERVAL", "1.0"))
    SPEAKING_INTERVAL: float = float(os.getenv("SPEAKING_INTERVAL", "0.1"))
    SPEAKING_THRESHOLD: float = float(os.getenv("SPEAKING_THRESHOLD", "30"))

    # Capture devices (aiortc MediaPlayer file/format pairs)
    MEDIA_AUDIO_FILE: str = os.getenv("MEDIA_AUDIO_FILE", "default")
    MEDIA_AUDIO_FORMAT: str | None = os.getenv("MEDIA_AUDIO_FORMAT", "pulse")
    MEDIA_VIDEO_FILE: str = os.getenv("MEDIA_VIDEO_FILE", "/dev/video0")
    MEDIA_VIDEO_FORMAT: str | None = os.getenv("MEDIA_VIDEO_FORMAT", "v4l2")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

# Convenient module-level alias
settings = get_settings()


def ice_servers(cfg: Settings = settings) -> list[dict]:
    """ICE server list handed to browsers and to the Python call client."""
    servers = []
    if cfg.STUN_SERVER:
        servers.append({"urls": cfg.STUN_SERVER})
    # Always include Google public STUN as fallback
    servers.extend([
        {"urls": "stun:stun.l.google.com:19302"},
        {"urls": "stun:stun1.l.google.com:19302"},
    ])

    if cfg.TURN_URL and cfg.TURN_USERNAME and cfg.TURN_PASSWORD:
        servers.append({
            "urls": cfg.TURN_URL,
            "username": cfg.TURN_USERNAME,
            "credential": cfg.TURN_PASSWORD,
        })
    return servers
