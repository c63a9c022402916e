from __future__ import annotations

from typing import Optional

UNPARSABLE_USER_MESSAGE = (
    "The model's response could not be read as a design document. It was probably "
    "truncated or malformed; please try again or select a different model."
)


class GenerationFailure(Exception):
    """Base failure carried from the point of detection to the HTTP boundary."""

    kind = "generation_failure"

    def __init__(self, message: str, *, http_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.http_status = http_status


class ClientError(GenerationFailure):
    """Caller or credential fault (4xx). Fix the input; retrying will not help."""

    kind = "client_error"


class TransientError(GenerationFailure):
    """Environment fault (5xx, network, empty body). Eligible for retry."""

    kind = "transient_error"


class UnparsableResponse(GenerationFailure):
    kind = "unparsable_response"


class GenerationCancelled(GenerationFailure):
    kind = "cancelled"


def classify_status(status: int) -> Optional[GenerationFailure]:
    """Map an HTTP status to a failure, or None for success."""
    if 200 <= status < 300:
        return None
    if 400 <= status < 500:
        return ClientError(f"API call failed with status: {status}.", http_status=status)
    return TransientError(f"API call failed with status: {status}.", http_status=status)


def user_message(failure: GenerationFailure) -> str:
    """Human-readable text for the browser; never includes transport detail."""
    if isinstance(failure, ClientError):
        if failure.http_status == 401:
            return "Authentication failed. The API key you provided is likely invalid or incorrect."
        if failure.http_status == 403:
            return "Permission Denied. Your API key may not have the necessary permissions."
        if failure.http_status == 429:
            return "The model provider is rate limiting this key. Please wait a moment and try again."
        return "The model provider rejected the request. Check the selected model and try again."
    if isinstance(failure, TransientError):
        return "Could not get a response from the model provider after several attempts. Please check your network and try again."
    if isinstance(failure, UnparsableResponse):
        return UNPARSABLE_USER_MESSAGE
    if isinstance(failure, GenerationCancelled):
        return "The generation request was cancelled."
    return "An unknown error occurred."
