"""Gemini client with OAuth refresh-token authentication.

One call to :meth:`GeminiClient.generate` exchanges the account's refresh
token for an access token and sends a single generation request, retrying
on the *same* account:

- HTTP 429: wait 5s, 10s, 20s (doubling per attempt) and try again.
- Network errors and 5xx: try again immediately.
- Failed token exchange, 401/403: :class:`CredentialError`, no retry.
- Any other 4xx: :class:`UpstreamError`, no retry.

Switching to another account is the caller's job (see ``rotation``).
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..accounts import Account
from ..config import GEMINI_ENDPOINT, TOKEN_ENDPOINT
from ..errors import CredentialError, RateLimited, TransientUpstreamError, UpstreamError
from ..logging import JSONLLogger, get_logger
from ..memory.models import Citation, Message, Role
from ..memory.prompt import FORCE_LOOKUP_INSTRUCTION

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 5.0
MAX_CITATIONS = 5


@dataclass
class GenerationOptions:
    """Per-request generation settings."""

    force_external_lookup: bool = False
    temperature: float = 0.9
    max_output_tokens: int = 65_536


@dataclass
class GenerationResult:
    """Text and citations extracted from a generation response."""

    text: str
    citations: list[Citation] = field(default_factory=list)


def to_contents(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert log messages into ordered conversational turns."""
    return [
        {"role": "user" if m.role is Role.USER else "model", "parts": [{"text": m.content}]}
        for m in messages
    ]


def parse_generation(payload: dict[str, Any]) -> GenerationResult:
    """Extract the visible answer and its citations from a response body.

    Accepts both the bare ``{"candidates": ...}`` shape and the wrapped
    ``{"response": {"candidates": ...}}`` shape.
    """
    body = payload.get("response", payload) if isinstance(payload, dict) else {}
    candidates = body.get("candidates") or []
    if not candidates:
        return GenerationResult(text="")

    candidate = candidates[0] or {}
    parts = (candidate.get("content") or {}).get("parts") or []
    text_parts = [p for p in parts if isinstance(p, dict) and p.get("text")]

    # Reasoning artifacts carry `thought` or `thoughtSignature`.
    visible = next(
        (p for p in text_parts if not p.get("thought") and not p.get("thoughtSignature")),
        None,
    )
    chosen = visible or (text_parts[0] if text_parts else None)

    citations: list[Citation] = []
    seen: set[str] = set()
    chunks = (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []
    for chunk in chunks:
        if not isinstance(chunk, dict):
            continue
        web = chunk.get("web") or {}
        url = web.get("uri")
        if not url or url in seen:
            continue
        seen.add(url)
        citations.append(Citation(title=web.get("title") or url, url=url))

    return GenerationResult(
        text=chosen["text"] if chosen else "",
        citations=citations[:MAX_CITATIONS],
    )


class GeminiClient:
    """Issues generation requests on behalf of a single account."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        model: str = "gemini-3-pro-preview",
        endpoint: str = GEMINI_ENDPOINT,
        token_endpoint: str = TOKEN_ENDPOINT,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        event_log: JSONLLogger | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            client_id: OAuth client id used for the token exchange.
            client_secret: OAuth client secret used for the token exchange.
            model: Model name sent with each request.
            endpoint: Generation endpoint URL.
            token_endpoint: OAuth token endpoint URL.
            http_client: Shared HTTP client; one is created if omitted.
            timeout: Request timeout in seconds for a created client.
            sleep: Awaitable used for backoff waits.
            event_log: Structured event log.
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.model = model
        self.endpoint = endpoint
        self.token_endpoint = token_endpoint
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep
        self._events = event_log or get_logger()

    async def exchange_token(self, account: Account) -> str:
        """Exchange the account's refresh token for an access token.

        Raises:
            CredentialError: If the token endpoint rejects the credential.
            TransientUpstreamError: If the endpoint cannot be reached.
        """
        try:
            response = await self._http.post(
                self.token_endpoint,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": account.credential,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.RequestError as e:
            raise TransientUpstreamError(f"Token exchange failed: {e}") from e

        if response.is_server_error:
            raise TransientUpstreamError(
                f"Token endpoint error ({response.status_code})",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise CredentialError(
                f"Token exchange rejected for {account.identity}: {response.text[:200]}"
            )

        try:
            token = response.json().get("access_token")
        except ValueError as e:
            raise TransientUpstreamError(f"Malformed token response: {e}") from e
        if not token:
            raise CredentialError(f"Token endpoint returned no access_token for {account.identity}")
        return token

    def build_request(
        self,
        account: Account,
        messages: list[Message],
        system_prompt: str | None,
        options: GenerationOptions,
    ) -> dict[str, Any]:
        """Build the request envelope for one generation call."""
        request: dict[str, Any] = {
            "contents": to_contents(messages),
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_output_tokens,
            },
            "tools": [{"googleSearch": {}}],
        }

        instruction = system_prompt or ""
        if options.force_external_lookup:
            instruction = f"{instruction}\n\n{FORCE_LOOKUP_INSTRUCTION}".strip()
        if instruction:
            request["systemInstruction"] = {"role": "user", "parts": [{"text": instruction}]}

        envelope: dict[str, Any] = {
            "model": self.model,
            "request": request,
            "requestType": "agent",
            "requestId": f"neuro-{int(time.time() * 1000)}",
        }
        if account.project_id:
            envelope["project"] = account.project_id
        return envelope

    async def _post(self, token: str, body: dict[str, Any]) -> httpx.Response:
        try:
            return await self._http.post(
                self.endpoint,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as e:
            raise TransientUpstreamError(f"Request failed: {e}") from e

    async def generate(
        self,
        account: Account,
        messages: list[Message],
        system_prompt: str | None = None,
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        """Generate a reply to ``messages`` using ``account``.

        Raises:
            CredentialError: The account's credential is unusable.
            RateLimited: Every attempt hit HTTP 429.
            TransientUpstreamError: The last attempt failed transiently.
            UpstreamError: The request was rejected outright.
        """
        options = options or GenerationOptions()
        body = self.build_request(account, messages, system_prompt, options)
        token: str | None = None
        last_error: UpstreamError | None = None

        for attempt in range(MAX_ATTEMPTS):
            start = time.time()
            status: int | None = None
            try:
                if token is None:
                    token = await self.exchange_token(account)

                response = await self._post(token, body)
                status = response.status_code

                if status == 429:
                    wait = BACKOFF_BASE_SECONDS * (2**attempt)
                    logger.info(
                        f"Rate limit hit, waiting {wait:.0f}s before retry "
                        f"{attempt + 1}/{MAX_ATTEMPTS}"
                    )
                    last_error = RateLimited("Quota exhausted", status_code=status)
                    self._log_call(account, attempt, status, start, "rate_limited")
                    await self._sleep(wait)
                    continue
                if status in (401, 403):
                    raise CredentialError(
                        f"Access denied for {account.identity} ({status})"
                    )
                if response.is_server_error:
                    raise TransientUpstreamError(
                        f"Gemini error ({status}): {response.text[:200]}",
                        status_code=status,
                    )
                if not response.is_success:
                    raise UpstreamError(
                        f"Gemini error ({status}): {response.text[:200]}",
                        status_code=status,
                    )

                try:
                    payload = response.json()
                except ValueError as e:
                    raise TransientUpstreamError(
                        f"Malformed response: {e}", status_code=status
                    ) from e

                result = parse_generation(payload)
                self._log_call(account, attempt, status, start)
                return result

            except TransientUpstreamError as e:
                last_error = e
                self._log_call(account, attempt, status, start, str(e))
                logger.warning(f"Transient failure on attempt {attempt + 1}/{MAX_ATTEMPTS}: {e}")
                continue
            except (CredentialError, UpstreamError) as e:
                self._log_call(account, attempt, status, start, str(e))
                raise

        assert last_error is not None
        raise last_error

    def _log_call(
        self,
        account: Account,
        attempt: int,
        status: int | None,
        start: float,
        error: str | None = None,
    ) -> None:
        self._events.log_model_call(
            account.identity,
            attempt=attempt + 1,
            status_code=status,
            duration_ms=(time.time() - start) * 1000,
            error=error,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()
