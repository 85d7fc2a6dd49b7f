"""
ERRORS MODULE
=============

Exception types shared by the relay and the client-side session.

  TransportError          - network unreachable, timeout, or abort; the request never got a response.
  HttpError               - a non-2xx response; carries status_code and the (maybe unparsed) body.
  ApiError                - HttpError raised by execute_json() when a JSON call ends unsuccessfully.
  MalformedResponseError  - 200 OK but the JSON misses what we need. Normally absorbed by the normalizer.
                            The relay reports it as 502 malformed_response_error.
  NoImageUrlError         - an image response with none of the known URL fields.
  ValidationError         - input rejected before any network call (e.g. "/imagine" with no prompt).
  ConfigurationError      - relay-side only: missing credentials or bad settings.

Each class carries an `error_type` string used in the relay's {error: {message, type}} envelope.
"""

from typing import Any, Optional


class RelayChatError(Exception):
    """Base class for every error raised by relaychat."""

    error_type = "internal_error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class TransportError(RelayChatError):
    """The request failed before a response arrived (connection, timeout, abort)."""

    error_type = "api_error"


class HttpError(RelayChatError):
    """A response arrived with a non-success status."""

    error_type = "api_error"

    def __init__(self, message: str, status_code: int = 500, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def upstream_message(self) -> Optional[str]:
        """Return error.message from a {error: {message}} body, if the body has one."""
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return error["message"]
        return None

    def upstream_type(self) -> Optional[str]:
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict) and isinstance(error.get("type"), str):
                return error["type"]
        return None


class ApiError(HttpError):
    """Raised by RetryingFetchClient.execute_json when the final response is not 2xx."""


class MalformedResponseError(RelayChatError):
    """The upstream answered, but not with anything usable. The failure is permanent."""

    error_type = "malformed_response_error"
    status_code = 502


class NoImageUrlError(MalformedResponseError):
    """The image response had no data[0].url, url, or imageUrl field."""

    def __init__(self, message: str = "No image URL in response"):
        super().__init__(message)


class ValidationError(RelayChatError):
    error_type = "invalid_request_error"
    status_code = 400


class ConfigurationError(RelayChatError):
    error_type = "configuration_error"
    status_code = 500
