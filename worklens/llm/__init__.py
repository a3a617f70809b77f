"""
Oracle access: OpenAI-compatible client, manager singleton and prompts
"""

from .client import LLMClient
from .manager import LLMManager, get_llm_manager, reset_llm_manager
from .prompt_manager import PromptManager, get_prompt_manager

__all__ = [
    "LLMClient",
    "LLMManager",
    "get_llm_manager",
    "reset_llm_manager",
    "PromptManager",
    "get_prompt_manager",
]
