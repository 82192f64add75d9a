"""
Location: python/chatstream_sdk/transport.py

Summary:
    HTTP wire helpers for OpenAI-compatible chat completion endpoints.
    Builds the endpoint URL, request headers and body, and turns a
    non-success response into a fatal TransportError before any chunk is
    read.

Usage:
    Used by client.py for both streaming and non-streaming requests.

Example:
    from chatstream_sdk.transport import build_headers, check_response

    headers = build_headers("sk-...")
    async with http.stream("POST", url, json=body, headers=headers) as response:
        await check_response(response)
"""

from typing import Optional

import httpx

from .exceptions import ChatStreamError
from .types import ChatRequest


CHAT_COMPLETIONS_PATH = "/chat/completions"

# Longest response body excerpt kept on a TransportError.
_BODY_EXCERPT_LIMIT = 500


class TransportError(ChatStreamError):
    """
    The server answered with a non-success status.

    Attributes:
        status_code: HTTP status of the failed response
        body: Start of the response body, if it could be read
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class InvalidResponseError(ChatStreamError):
    """Exception raised when a completion response has no choices."""
    pass


class ConfigurationError(ChatStreamError):
    """Exception raised when the client is missing required settings."""
    pass


def chat_completions_url(base_url: str) -> str:
    """
    Build the chat completions endpoint for an API root.

    Args:
        base_url: API root such as "https://api.deepseek.com"

    Returns:
        Full endpoint URL
    """
    return f"{base_url.rstrip('/')}{CHAT_COMPLETIONS_PATH}"


def build_headers(
    api_key: Optional[str],
    extra: Optional[dict[str, str]] = None,
    stream: bool = True,
) -> dict[str, str]:
    """
    Build request headers for a chat completion call.

    Args:
        api_key: Bearer token; required
        extra: Additional headers, applied last
        stream: Whether to ask for an event stream

    Returns:
        New headers dict

    Raises:
        ConfigurationError: If no API key is configured
    """
    if not api_key or not api_key.strip():
        raise ConfigurationError("API key is not configured")

    headers = {
        "Authorization": f"Bearer {api_key.strip()}",
        "Content-Type": "application/json",
    }
    if stream:
        headers["Accept"] = "text/event-stream"
    headers.update(extra or {})
    return headers


def build_chat_body(request: ChatRequest) -> dict:
    """Serialize a ChatRequest into the JSON body sent to the endpoint."""
    return request.model_dump()


async def check_response(response: httpx.Response) -> None:
    """
    Fail fast on a non-success response.

    The body of a failed streamed response is read so the error can
    carry it; a successful response is left untouched.

    Args:
        response: The response to check

    Raises:
        TransportError: If the status is not 2xx
    """
    if response.is_success:
        return

    try:
        body = (await response.aread()).decode("utf-8", errors="replace")
    except httpx.HTTPError:
        body = ""

    raise TransportError(
        f"HTTP error {response.status_code}",
        status_code=response.status_code,
        body=body[:_BODY_EXCERPT_LIMIT],
    )
