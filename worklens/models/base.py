"""
Base model for result/response objects
Fields are snake_case in Python and camelCase when dumped by alias
"""

from typing import Optional

from pydantic import BaseModel as PydanticBaseModel
from pydantic import ConfigDict
from pydantic.alias_generators import to_camel


class BaseModel(PydanticBaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_payload(self) -> dict:
        """Dump with camelCase keys for external callers"""
        return self.model_dump(by_alias=True)


class OperationResponse(BaseModel):
    """Best-effort success flag with an optional message"""

    success: bool
    message: str = ""
    error: Optional[str] = None
