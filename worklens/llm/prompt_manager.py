"""
Prompt Manager - loads oracle prompts from prompts.toml

Usage:
    prompt_manager = get_prompt_manager()
    messages = prompt_manager.build_messages(
        "subtask_grouping", "user_prompt_template", tasks_text=..., subtasks_text=...
    )
    config_params = prompt_manager.get_config_params("subtask_grouping")
    response = await llm_manager.chat_completion(messages, **config_params)
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

from worklens.core.logger import get_logger

logger = get_logger(__name__)


class PromptManager:
    """Prompt templates and per-category call parameters"""

    def __init__(self, prompts_file: Optional[Path] = None):
        self.prompts_file = Path(prompts_file or Path(__file__).parent / "prompts.toml")
        self._prompts: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        with open(self.prompts_file, "r", encoding="utf-8") as f:
            prompts = toml.load(f)
        logger.debug(f"Loaded {len(prompts)} prompt categories from {self.prompts_file}")
        return prompts

    def get_prompt(self, category: str, key: str) -> str:
        try:
            return str(self._prompts[category][key]).strip()
        except KeyError as e:
            raise KeyError(f"Prompt {category}.{key} not defined in {self.prompts_file}") from e

    def get_system_prompt(self, category: str, **variables: Any) -> str:
        template = self.get_prompt(category, "system_prompt")
        return template.format(**variables) if variables else template

    def get_user_prompt(self, category: str, template_key: str, **variables: Any) -> str:
        return self.get_prompt(category, template_key).format(**variables)

    def build_messages(
        self, category: str, template_key: str = "user_prompt_template", **variables: Any
    ) -> List[Dict[str, Any]]:
        """System + user message pair for one category"""
        return [
            {"role": "system", "content": self.get_system_prompt(category, **variables)},
            {"role": "user", "content": self.get_user_prompt(category, template_key, **variables)},
        ]

    def get_config_params(self, category: str) -> Dict[str, Any]:
        """Chat completion kwargs for a category (max_tokens, temperature, response_format)"""
        config = dict(self._prompts.get(category, {}).get("config", {}))
        params: Dict[str, Any] = {}
        if "max_tokens" in config:
            params["max_tokens"] = int(config["max_tokens"])
        if "temperature" in config:
            params["temperature"] = float(config["temperature"])
        if config.get("json_mode"):
            params["response_format"] = {"type": "json_object"}
        return params

    def categories(self) -> List[str]:
        return list(self._prompts.keys())


_prompt_manager: Optional[PromptManager] = None


def get_prompt_manager() -> PromptManager:
    global _prompt_manager
    if _prompt_manager is None:
        _prompt_manager = PromptManager()
    return _prompt_manager
