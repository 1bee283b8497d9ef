import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from dotenv import load_dotenv


# Load .env once at import time (support running from any cwd)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    STATIC_DIR: str | None = os.getenv("STATIC_DIR")

    # STUN/TURN
    STUN_SERVER: str | None = os.getenv("STUN_SERVER")
    TURN_URL: str | None = os.getenv("TURN_URL")
    TURN_USERNAME: str | None = os.getenv("TURN_USERNAME")
    TURN_PASSWORD: str | None = os.getenv("TURN_PASSWORD")

    # Agent
    SIGNAL_URL: str = os.getenv("SIGNAL_URL", "ws://localhost:3000/ws")
    BUFFER_EARLY_CANDIDATES: bool = _env_flag("BUFFER_EARLY_CANDIDATES")

    def ice_servers(self) -> list[dict]:
        """ICE server list in RTCConfiguration format.

        STUN_SERVER comes first when set, Google public STUN is always
        included as fallback, TURN only when url and credentials are all set.
        """
        ice_servers = []
        if self.STUN_SERVER:
            ice_servers.append({"urls": self.STUN_SERVER})
        ice_servers.extend([
            {"urls": "stun:stun.l.google.com:19302"},
            {"urls": "stun:stun1.l.google.com:19302"},
        ])

        if self.TURN_URL and self.TURN_USERNAME and self.TURN_PASSWORD:
            ice_servers.append({
                "urls": self.TURN_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_PASSWORD,
            })
        return ice_servers


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

# Convenient module-level alias
settings = get_settings()
