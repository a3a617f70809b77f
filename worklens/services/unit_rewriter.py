"""
Oracle rewrites of a unit's name and summary

Used by both aggregators (mutate band) and the deduplication merger.
"""

from worklens.core.json_parser import decode_oracle_output
from worklens.core.logger import get_logger
from worklens.core.protocols import OracleProtocol
from worklens.llm.prompt_manager import PromptManager
from worklens.models.oracle_outputs import UnitRewriteOutput

logger = get_logger(__name__)


class UnitRewriter:
    def __init__(self, oracle: OracleProtocol, prompt_manager: PromptManager):
        self.oracle = oracle
        self.prompt_manager = prompt_manager

    async def _ask(self, category: str, **variables) -> UnitRewriteOutput:
        messages = self.prompt_manager.build_messages(
            category, "user_prompt_template", **variables
        )
        config_params = self.prompt_manager.get_config_params(category)
        response = await self.oracle.chat_completion(messages, **config_params)
        return decode_oracle_output(response.get("content", ""), UnitRewriteOutput)

    async def mutate(
        self, unit_kind: str, current_name: str, current_summary: str, new_content: str
    ) -> UnitRewriteOutput:
        """Rewrite a unit so it also covers new_content"""
        output = await self._ask(
            "unit_mutation",
            unit_kind=unit_kind,
            current_name=current_name,
            current_summary=current_summary,
            new_content=new_content,
        )
        logger.debug(f"Mutated {unit_kind} '{current_name}' -> '{output.name}'")
        return output

    async def merge(self, unit_kind: str, first_text: str, second_text: str) -> UnitRewriteOutput:
        """One name and summary covering two near-duplicate units"""
        output = await self._ask(
            "unit_merge", unit_kind=unit_kind, first_text=first_text, second_text=second_text
        )
        logger.debug(f"Merged {unit_kind} text into '{output.name}'")
        return output
