"""
Oracle error taxonomy

Both failure kinds end the current cycle without an inline retry; the next
trigger, the stalled-buffer sweep or the background queue is the retry path.
"""

from typing import Optional


class OracleError(Exception):
    """Base class for failures of the text-generation/embedding oracle"""


class TransientOracleFailure(OracleError):
    """Network error, timeout or non-2xx response from the oracle"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedOracleOutput(OracleError):
    """Oracle answered, but the payload is not valid JSON or violates the schema"""

    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output
