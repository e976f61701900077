from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_DEFAULT_HOST = "https://api.openai.com"
_DEFAULT_TIMEOUT = 60.0
_DEFAULT_CONFIG_PATH = Path.home() / ".chatkit" / "config.json"

CONVERSATION_ENDPOINT = "/v1/chatkit/conversation"


@dataclass
class ChatKitConfig:
    host: str
    client_secret: str | None
    timeout: float = _DEFAULT_TIMEOUT

    @property
    def base_url(self) -> str:
        return self.host.rstrip("/")

    @property
    def conversation_url(self) -> str:
        return f"{self.base_url}{CONVERSATION_ENDPOINT}"


def load_config(config_path: str | None = None) -> ChatKitConfig:
    """Load config from ~/.chatkit/config.json, falling back to env vars.

    Config file fields:
    - host (str, default "https://api.openai.com")
    - client_secret (str, optional)
    - timeout (float seconds, default 60)

    Env var overrides:
    - CHATKIT_HOST
    - CHATKIT_CLIENT_SECRET
    - CHATKIT_TIMEOUT

    Never raises; uses defaults if the config file is missing or invalid.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH

    host = _DEFAULT_HOST
    client_secret: str | None = None
    timeout = _DEFAULT_TIMEOUT

    if path.exists():
        try:
            data = json.loads(path.read_text())
            host = str(data.get("host", _DEFAULT_HOST))
            client_secret = data.get("client_secret", None)
            timeout = float(data.get("timeout", _DEFAULT_TIMEOUT))
        except Exception as exc:
            logger.warning("Failed to parse config file %s: %s; using defaults", path, exc)
            host = _DEFAULT_HOST
            client_secret = None
            timeout = _DEFAULT_TIMEOUT
    else:
        logger.info("Config file not found at %s; using defaults", path)

    env_host = os.environ.get("CHATKIT_HOST")
    if env_host:
        host = env_host

    env_secret = os.environ.get("CHATKIT_CLIENT_SECRET")
    if env_secret is not None:
        client_secret = env_secret

    env_timeout = os.environ.get("CHATKIT_TIMEOUT")
    if env_timeout is not None:
        try:
            timeout = float(env_timeout)
        except ValueError:
            logger.warning("Invalid CHATKIT_TIMEOUT value %r; using %s", env_timeout, timeout)

    return ChatKitConfig(host=host, client_secret=client_secret, timeout=timeout)
