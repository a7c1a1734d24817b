"""
Settings Module

Runtime configuration for throwaway containers. Values come from the process
environment, optionally seeded from a local .env file.
"""

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DEFAULT_HOST_IP = "127.0.0.1"
DEFAULT_PROTOCOL = "tcp"
DEFAULT_DOCKER_TIMEOUT = 60


class Settings(BaseModel):
    default_host_ip: str = DEFAULT_HOST_IP
    docker_base_url: Optional[str] = None  # None means use DOCKER_HOST and friends
    docker_timeout: int = DEFAULT_DOCKER_TIMEOUT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from THROWAWAY_* environment variables"""
        return cls(
            default_host_ip=os.getenv("THROWAWAY_DEFAULT_HOST_IP") or DEFAULT_HOST_IP,
            docker_base_url=os.getenv("THROWAWAY_DOCKER_BASE_URL") or None,
            docker_timeout=int(
                os.getenv("THROWAWAY_DOCKER_TIMEOUT", DEFAULT_DOCKER_TIMEOUT)
            ),
            log_level=os.getenv("THROWAWAY_LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
