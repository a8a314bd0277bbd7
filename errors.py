"""
Error taxonomy for the relay pipeline

Every error carries the HTTP status the boundary should answer with.
"""

from typing import Any, Optional


class RelayError(Exception):
    """Base class for all relay failures"""

    status_code = 500


class InputValidationError(RelayError):
    """Missing or malformed request parameter"""

    status_code = 400


class SignatureError(RelayError):
    """Bad signature length, unsealed operation or sender mismatch"""

    status_code = 400


class ResolutionError(RelayError):
    """getSenderAddress did not revert with the expected payload"""


class EncodingError(RelayError):
    """ABI encoding of an action's arguments failed"""


class SponsorshipError(RelayError):
    """Sponsor service call failed or returned an unusable response"""


class ConfigurationError(RelayError):
    """A required setting (key, service URL) is missing"""


class JsonRpcError(RelayError):
    """JSON-RPC endpoint answered with an error object or an HTTP failure"""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class SubmissionError(RelayError):
    """Relay or on-chain submission failed; the operation hash is kept for correlation"""

    def __init__(self, message: str, user_operation_hash: Optional[str] = None):
        super().__init__(message)
        self.user_operation_hash = user_operation_hash
