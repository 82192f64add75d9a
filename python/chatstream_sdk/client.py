"""
Location: python/chatstream_sdk/client.py

Summary:
    Main ChatClient class for chatstream-sdk. Sends chat completion
    requests to an OpenAI-compatible endpoint and decodes streamed
    responses into content and reasoning callbacks.

Usage:
    The primary entry point for using the SDK. Create a ChatClient with a
    ClientConfig, then stream completions. Every streamed request runs in
    a StreamSession that the caller can abort; starting a new request for
    the same consumer aborts the previous one.

Example:
    from chatstream_sdk import ChatClient, ClientConfig

    config = ClientConfig(api_key="sk-...", model="deepseek-reasoner")

    async with ChatClient(config) as client:
        session = await client.stream_chat(
            [{"role": "user", "content": "Hello"}],
            on_chunk=print,
            on_thinking=lambda text: print("thinking:", text),
        )
        print(session.state)  # SessionState.COMPLETED
"""

import asyncio
import logging
from typing import Optional, Sequence, Union

import httpx

from .dispatch import ChunkCallback
from .session import SessionError, SessionRegistry, SessionState, StreamSession
from .transport import (
    InvalidResponseError,
    TransportError,
    build_chat_body,
    build_headers,
    chat_completions_url,
    check_response,
)
from .types import ChatMessage, ChatRequest, ClientConfig

logger = logging.getLogger(__name__)

MessageInput = Union[ChatMessage, dict]

OPTIMIZE_SYSTEM_PROMPT = (
    "You are a professional text editor. Improve the text as follows:\n"
    "1. Make it read naturally, fluently and logically\n"
    "2. Fix grammar and punctuation\n"
    "3. Keep the original meaning\n"
    "4. Keep the tone consistent with the context\n"
    "5. Reply with the improved text only, nothing else"
)


class ChatClient:
    """
    Chat completion client with cancellable streaming.

    Attributes:
        config: ClientConfig with endpoint, credentials and defaults
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the ChatClient.

        Args:
            config: Client configuration (read from the environment if omitted)
            http_client: Optional pre-built httpx.AsyncClient; the client
                only closes clients it created itself
        """
        self.config = config or ClientConfig.from_env()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.config.timeout)
        self._sessions = SessionRegistry()

    async def close(self) -> None:
        """
        Close the HTTP client and release resources.

        Should be called when done with the client, or use
        the async context manager pattern.
        """
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "ChatClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args) -> None:
        """Exit async context manager and close resources."""
        await self.close()

    @property
    def url(self) -> str:
        return chat_completions_url(self.config.base_url)

    def create_session(self, consumer: str = "default") -> StreamSession:
        """
        Create the session handle for the next streamed request.

        Any session still live for the same consumer is aborted first.

        Args:
            consumer: Logical consumer key (e.g., one per chat panel)

        Returns:
            A fresh idle StreamSession
        """
        return self._sessions.begin(consumer)

    def active_session(self, consumer: str = "default") -> Optional[StreamSession]:
        """Return the consumer's live session, if any."""
        return self._sessions.active(consumer)

    def abort(self, consumer: str = "default") -> bool:
        """
        Abort the consumer's live session.

        Calling this when nothing is streaming is a no-op.

        Returns:
            True if a session was aborted by this call
        """
        return self._sessions.abort(consumer)

    async def stream_chat(
        self,
        messages: Sequence[MessageInput],
        on_chunk: ChunkCallback,
        on_thinking: Optional[ChunkCallback] = None,
        *,
        temperature: Optional[float] = None,
        session: Optional[StreamSession] = None,
        consumer: str = "default",
    ) -> StreamSession:
        """
        Stream a chat completion into callbacks.

        on_chunk receives every content delta and then exactly one
        terminal marker: "[DONE]" on completion or "[ABORTED]" after an
        abort. Failures raise instead and deliver no marker.

        Args:
            messages: Conversation as ChatMessage objects or dicts
            on_chunk: Receives content deltas and the terminal marker
            on_thinking: Receives reasoning deltas; optional
            temperature: Overrides the configured temperature
            session: Handle from create_session(); created if omitted
            consumer: Consumer key used when no session is given

        Returns:
            The finished StreamSession (state COMPLETED or ABORTED)

        Raises:
            ConfigurationError: If no API key is configured
            TransportError: If the response status is not 2xx or the
                request could not be sent
            UnexpectedReadError: If the response body fails mid-stream
            SessionError: If the session was already used
        """
        if session is None:
            session = self.create_session(consumer)
        if session.state is not SessionState.IDLE:
            raise SessionError(f"session already {session.state.value}; sessions cannot be reused")
        if session.cancelled:
            session.finish_aborted(on_chunk)
            self._sessions.release(session)
            return session

        try:
            request = self._build_request(messages, temperature, stream=True)
            headers = build_headers(self.config.api_key, self.config.headers)
        except Exception as e:
            session.fail(e)
            self._sessions.release(session)
            raise

        logger.debug(
            "streaming %d messages to %s with model %s",
            len(request.messages),
            self.url,
            request.model,
        )
        try:
            response = await self._open_stream(session, request, headers)
            if response is None:
                session.finish_aborted(on_chunk)
                return session
            try:
                if not session.cancelled:
                    try:
                        await check_response(response)
                    except TransportError as e:
                        session.fail(e)
                        raise
                await session.run(response.aiter_bytes(), on_chunk, on_thinking)
            finally:
                await response.aclose()
        except httpx.HTTPError as e:
            if session.state is not SessionState.IDLE:
                raise
            if session.cancelled:
                session.finish_aborted(on_chunk)
                return session
            session.fail(e)
            raise TransportError(f"request to {self.url} failed: {e}") from e
        except asyncio.CancelledError:
            if session.state is SessionState.IDLE:
                session.abort()
                session.finish_aborted(on_chunk)
            raise
        finally:
            self._sessions.release(session)
        return session

    async def _open_stream(
        self,
        session: StreamSession,
        request: ChatRequest,
        headers: dict[str, str],
    ) -> Optional[httpx.Response]:
        """
        Send a streamed request, racing it against an abort of the session.

        Returns:
            The response with its body unread, or None when the session
            was aborted before the response headers arrived
        """
        http_request = self._http.build_request(
            "POST",
            self.url,
            json=build_chat_body(request),
            headers=headers,
        )
        send = asyncio.ensure_future(self._http.send(http_request, stream=True))
        waiter = asyncio.ensure_future(session.wait_aborted())
        try:
            await asyncio.wait({send, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not send.done():
                send.cancel()
                await asyncio.wait({send})
        if send.cancelled():
            return None
        if session.cancelled:
            # headers and abort arrived in the same step
            if send.exception() is None:
                await send.result().aclose()
            return None
        return send.result()

    async def complete(
        self,
        messages: Sequence[MessageInput],
        *,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Request a non-streamed completion.

        Args:
            messages: Conversation as ChatMessage objects or dicts
            temperature: Overrides the configured temperature

        Returns:
            Content of the first choice's message ("" if it has none)

        Raises:
            ConfigurationError: If no API key is configured
            TransportError: If the response status is not 2xx
            InvalidResponseError: If the response carries no choices
        """
        request = self._build_request(messages, temperature, stream=False)
        headers = build_headers(self.config.api_key, self.config.headers, stream=False)

        try:
            response = await self._http.post(
                self.url,
                json=build_chat_body(request),
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("completion request to %s failed: %s", self.url, e)
            raise TransportError(f"request to {self.url} failed: {e}") from e
        await check_response(response)

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError("completion response is not JSON") from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices, list):
            raise InvalidResponseError("completion response has no choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        return (message or {}).get("content") or ""

    async def optimize_text(self, text: str) -> str:
        """
        Polish a piece of text with a fixed editing prompt.

        Sent as a non-streamed completion at temperature 0.3; the
        configured system prompt of a conversation plays no part.

        Args:
            text: Text to rewrite

        Returns:
            The rewritten text

        Raises:
            TransportError: If the response status is not 2xx
            InvalidResponseError: If the response carries no choices
        """
        return await self.complete(
            [
                ChatMessage(role="system", content=OPTIMIZE_SYSTEM_PROMPT),
                ChatMessage(role="user", content=f'Please optimize this text:\n"{text}"'),
            ],
            temperature=0.3,
        )

    def _build_request(
        self,
        messages: Sequence[MessageInput],
        temperature: Optional[float],
        stream: bool,
    ) -> ChatRequest:
        return ChatRequest(
            model=self.config.model,
            messages=list(messages),
            temperature=self.config.temperature if temperature is None else temperature,
            stream=stream,
        )


__all__ = ["ChatClient"]
