"""
Strict decoding of oracle replies

The reply must be a bare JSON document matching the expected schema.
Markdown fences, prose around the JSON, missing fields or wrong shapes are
all rejected as MalformedOracleOutput with the raw text preserved.
"""

import json
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError

from worklens.core.errors import MalformedOracleOutput
from worklens.core.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


def parse_json_from_response(content: str) -> Any:
    """
    Parse an oracle reply as JSON

    Args:
        content: Raw reply text

    Returns:
        Decoded JSON value

    Raises:
        MalformedOracleOutput: if the text is not a single JSON document
    """
    if not content or not content.strip():
        raise MalformedOracleOutput("Empty oracle response", raw_output=content or "")

    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        logger.error(f"Oracle reply is not valid JSON: {e}")
        logger.error(f"Raw oracle output: {content}")
        raise MalformedOracleOutput(f"Invalid JSON: {e}", raw_output=content) from e


def decode_oracle_output(content: str, schema: Type[T]) -> T:
    """
    Parse and validate an oracle reply against a schema

    Raises:
        MalformedOracleOutput: on JSON or schema errors
    """
    data = parse_json_from_response(content)

    if not isinstance(data, dict):
        logger.error(f"Oracle reply for {schema.__name__} is not a JSON object: {content[:200]}")
        raise MalformedOracleOutput(
            f"Expected JSON object for {schema.__name__}, got {type(data).__name__}",
            raw_output=content,
        )

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        logger.error(f"Oracle reply does not match {schema.__name__}: {e}")
        logger.error(f"Raw oracle output: {content}")
        raise MalformedOracleOutput(
            f"Schema mismatch for {schema.__name__}: {e.error_count()} error(s)",
            raw_output=content,
        ) from e
