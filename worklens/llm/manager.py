"""
LLM Manager - Centralized oracle access
All pipeline components go through this manager instead of creating
LLMClient instances directly
"""

from typing import Any, Dict, List, Optional

from worklens.core.logger import get_logger

from .client import LLMClient

logger = get_logger(__name__)


class LLMManager:
    """
    Singleton front for the LLM client

    Implements the oracle contract (chat_completion + embed) and keeps
    simple call counters for the coordinator's stats.
    """

    _instance: Optional["LLMManager"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, "_initialized"):
            self._initialized = True
            self._client: Optional[LLMClient] = None
            self.stats: Dict[str, int] = {
                "chat_calls": 0,
                "embed_calls": 0,
                "failures": 0,
                "prompt_tokens": 0,
                "completion_tokens": 0,
            }
            logger.debug("LLMManager initialized")

    def _ensure_client(self) -> LLMClient:
        if self._client is None:
            self._client = LLMClient()
            logger.debug("Created new LLMClient instance")
        return self._client

    async def chat_completion(
        self, messages: List[Dict[str, Any]], **kwargs
    ) -> Dict[str, Any]:
        """
        Send chat completion request with the configured model

        Args:
            messages: Conversation message list
            **kwargs: Additional parameters (max_tokens, temperature, etc.)

        Returns:
            {"content": str, "usage": dict}
        """
        client = self._ensure_client()
        self.stats["chat_calls"] += 1
        try:
            result = await client.chat_completion(messages, **kwargs)
        except Exception:
            self.stats["failures"] += 1
            raise

        usage = result.get("usage") or {}
        self.stats["prompt_tokens"] += int(usage.get("prompt_tokens") or 0)
        self.stats["completion_tokens"] += int(usage.get("completion_tokens") or 0)
        return result

    async def embed(self, text: str) -> List[float]:
        client = self._ensure_client()
        self.stats["embed_calls"] += 1
        try:
            return await client.embed(text)
        except Exception:
            self.stats["failures"] += 1
            raise

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def get_llm_manager() -> LLMManager:
    return LLMManager()


def reset_llm_manager() -> None:
    """Forget the singleton (used by tests and config reloads)"""
    LLMManager._instance = None
