import logging
from typing import Protocol

import config

logger = logging.getLogger(__name__)


class KeyHost(Protocol):
    """Whatever is hosting the app and can hand it an API key."""

    async def has_selected_api_key(self) -> bool: ...

    async def open_select_key(self) -> None: ...


class EnvironmentKeyHost:
    """Treats a GEMINI_API_KEY / API_KEY in the environment (or .env) as the selected key."""

    async def has_selected_api_key(self) -> bool:
        return config.get_api_key() is not None

    async def open_select_key(self) -> None:
        config.reload_env()
        if config.get_api_key() is None:
            logger.warning("No API key found after reloading .env")
