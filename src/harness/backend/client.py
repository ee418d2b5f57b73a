"""HTTP client for the OpenCode server API.

This module provides an async wrapper around the OpenCode server for:
- Creating sessions scoped to a working directory
- Sending prompts (prompt_async or blocking message call)
- Querying session status
- Subscribing to the server-sent event stream
- Writing diagnostic log entries (used as a connectivity ping)

Every prompt response is decoded here into a tagged PromptAccepted or
PromptRejected value, so callers never inspect raw response shapes.
Transport failures are raised as BackendTransportError.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from src.harness.agent.errors import error_text
from src.harness.agent.models import (
    ModelSelection,
    PromptAccepted,
    PromptMode,
    PromptOutcome,
    PromptRejected,
    SessionHandle,
)


logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when an OpenCode server request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response, if any.
        response_body: Response body from the server, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class BackendTransportError(BackendError):
    """Raised when the server cannot be reached or the connection drops.

    Attributes:
        operation: The client operation that failed.
    """

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        detail = str(cause) or type(cause).__name__
        super().__init__(f"Network error during {operation}: {detail}")


class SessionCreationError(BackendError):
    """Raised when the server rejects session creation."""


def build_prompt_body(
    text: str,
    agent: str,
    model: Optional[ModelSelection] = None,
    file_parts: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Build the JSON body for a prompt call.

    The ``model`` key is omitted entirely when no override is configured so
    the server applies its own default.
    """
    parts: List[Dict[str, Any]] = [{"type": "text", "text": text}]
    if file_parts:
        parts.extend(file_parts)

    body: Dict[str, Any] = {"agent": agent, "parts": parts}
    if model is not None:
        body["model"] = model.to_body()
    return body


class EventSubscription:
    """An open server-sent event stream.

    The HTTP request is sent and the response headers received before the
    subscription object exists, so no event emitted after construction can
    be missed.
    """

    def __init__(self, response: httpx.Response):
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded event payloads until the stream ends.

        Payloads that are not valid JSON objects are skipped.
        """
        data_lines: List[str] = []
        async for line in self._response.aiter_lines():
            if line == "":
                if data_lines:
                    payload = self._decode("\n".join(data_lines))
                    data_lines = []
                    if payload is not None:
                        yield payload
                continue
            if line.startswith(":"):
                continue
            if line.startswith("data:"):
                data_lines.append(line[5:].lstrip())

        if data_lines:
            payload = self._decode("\n".join(data_lines))
            if payload is not None:
                yield payload

    def _decode(self, raw: str) -> Optional[Dict[str, Any]]:
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.debug("Skipping undecodable event payload", extra={"payload": raw[:200]})
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class OpenCodeClient:
    """Async client for a running OpenCode server.

    Attributes:
        base_url: Server URL, e.g. http://127.0.0.1:4096.
        timeout: Request timeout in seconds for short calls.

    Example:
        >>> client = OpenCodeClient("http://127.0.0.1:4096")
        >>> async with client:
        ...     session = await client.create_session("/workspace")
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "OpenCodeClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        timeout: Any = httpx.USE_CLIENT_DEFAULT,
    ) -> httpx.Response:
        try:
            return await self.client.request(
                method=method,
                url=path,
                params=params,
                json=json_data,
                timeout=timeout,
            )
        except httpx.TransportError as exc:
            raise BackendTransportError(operation, exc) from exc

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract the most useful error text from a failed response."""
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            error = payload.get("error", payload)
            text = error_text(error)
            if text:
                return text

        body = response.text.strip()
        if body:
            return body[:500]
        return f"HTTP {response.status_code}"

    async def log(
        self,
        message: str,
        level: str = "info",
        service: str = "harness",
    ) -> None:
        """Write a diagnostic log entry on the server.

        Raises:
            BackendError: If the server rejects the entry or is unreachable.
        """
        response = await self._request(
            "log",
            "POST",
            "/log",
            json_data={"service": service, "level": level, "message": message},
        )
        if response.status_code >= 400:
            raise BackendError(
                f"Log request failed: {self._error_message(response)}",
                status_code=response.status_code,
                response_body=response.text,
            )

    async def create_session(
        self,
        directory: str,
        title: Optional[str] = None,
    ) -> SessionHandle:
        """Create a new session.

        Args:
            directory: Working directory the session is scoped to.
            title: Optional session title.

        Returns:
            The created SessionHandle.

        Raises:
            SessionCreationError: If the server rejects the request or
                returns no session id.
            BackendTransportError: If the server is unreachable.
        """
        body: Dict[str, Any] = {}
        if title:
            body["title"] = title

        response = await self._request(
            "session creation",
            "POST",
            "/session",
            params={"directory": directory},
            json_data=body,
        )

        if response.status_code >= 400:
            raise SessionCreationError(
                f"Failed to create session: {self._error_message(response)}",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict) or not data.get("id"):
            raise SessionCreationError("Failed to create session: No data returned")

        return SessionHandle(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            version=str(data.get("version") or ""),
        )

    async def send_prompt(
        self,
        session_id: str,
        body: Dict[str, Any],
        directory: str,
        mode: PromptMode = PromptMode.ASYNC,
    ) -> PromptOutcome:
        """Send a prompt to a session.

        Args:
            session_id: Target session id.
            body: Prompt body from build_prompt_body.
            directory: Working directory of the session.
            mode: ASYNC returns as soon as the server accepts the prompt;
                SYNC waits for the assistant reply.

        Returns:
            PromptAccepted, or PromptRejected when the server answered with
            an error status or an ``error`` field.

        Raises:
            BackendTransportError: If the request never got a response.
        """
        if mode is PromptMode.ASYNC:
            path = f"/session/{session_id}/prompt_async"
            timeout: Any = httpx.USE_CLIENT_DEFAULT
        else:
            path = f"/session/{session_id}/message"
            timeout = None

        response = await self._request(
            "prompt",
            "POST",
            path,
            params={"directory": directory},
            json_data=body,
            timeout=timeout,
        )

        if response.status_code >= 400:
            return PromptRejected(
                error=self._error_message(response),
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return PromptAccepted()

        try:
            payload = response.json()
        except ValueError:
            if mode is PromptMode.SYNC:
                return PromptRejected(error="Invalid JSON in prompt response")
            return PromptAccepted()

        if not isinstance(payload, dict):
            return PromptAccepted()

        if payload.get("error"):
            return PromptRejected(error=error_text(payload["error"]))

        if mode is PromptMode.ASYNC:
            return PromptAccepted()

        info = payload.get("info") if isinstance(payload.get("info"), dict) else None
        if info is not None and info.get("error"):
            return PromptRejected(error=error_text(info["error"]))

        parts = payload.get("parts") or []
        return PromptAccepted(
            parts=tuple(part for part in parts if isinstance(part, dict)),
            info=info,
        )

    async def session_status(self, directory: str) -> Dict[str, Dict[str, Any]]:
        """Fetch the status of all sessions in a directory.

        Returns:
            Mapping of session id to its status object.

        Raises:
            BackendError: If the request fails.
        """
        response = await self._request(
            "status",
            "GET",
            "/session/status",
            params={"directory": directory},
        )
        if response.status_code >= 400:
            raise BackendError(
                f"Status request failed: {self._error_message(response)}",
                status_code=response.status_code,
            )
        data = response.json()
        if not isinstance(data, dict):
            return {}
        return data

    async def abort_session(self, session_id: str, directory: str) -> None:
        """Stop any work in progress in a session.

        Raises:
            BackendError: If the server rejects the request or is unreachable.
        """
        response = await self._request(
            "session abort",
            "POST",
            f"/session/{session_id}/abort",
            params={"directory": directory},
        )
        if response.status_code >= 400:
            raise BackendError(
                f"Session abort failed: {self._error_message(response)}",
                status_code=response.status_code,
                response_body=response.text,
            )

    async def subscribe_events(self, directory: str) -> EventSubscription:
        """Open the server-sent event stream.

        Returns:
            An EventSubscription; the caller must aclose() it.

        Raises:
            BackendError: If the server refuses the subscription.
        """
        request = self.client.build_request(
            "GET",
            "/event",
            params={"directory": directory},
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TransportError as exc:
            raise BackendTransportError("event subscription", exc) from exc

        if response.status_code >= 400:
            await response.aclose()
            raise BackendError(
                f"Event subscription failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return EventSubscription(response)
