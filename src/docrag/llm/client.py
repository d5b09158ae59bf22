"""
Chat completion client for OpenAI-compatible endpoints.

Supports both plain JSON responses and server-sent-event streaming, where
the answer arrives as ``data:`` lines carrying delta fragments and ends with
a ``data: [DONE]`` sentinel.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import requests

from docrag.errors import CompletionError

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass
class Choice:
    """One completion alternative."""

    content: str


@dataclass
class Completion:
    """Result of a chat completion request."""

    choices: list[Choice] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Content of the first choice, or an empty string."""
        return self.choices[0].content if self.choices else ""


class ChatCompletionClient:
    """LLM client for OpenAI-compatible /v1/chat/completions endpoints."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: int = 60,
        max_retries: int = 1,
        retry_delay: float = 2.0,
        stream: bool = False,
    ):
        """
        Initialize the completion client.

        Args:
            base_url: Service root, e.g. https://openrouter.ai/api
            model: Model name sent with every request
            api_key: Bearer token (a leading "Bearer " is tolerated)
            temperature: Sampling temperature (0.0 to 2.0)
            max_tokens: Maximum tokens to generate
            timeout: Request timeout in seconds
            max_retries: Attempts per request; 1 disables retries
            retry_delay: Initial delay between retries (exponential backoff)
            stream: Request a server-sent-event stream
        """
        self.endpoint_url = f"{base_url.rstrip('/')}/v1/chat/completions"
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.stream = stream

    def complete(self, system_prompt: str, user_prompt: str) -> Completion:
        """Send a system + user message pair."""
        return self.chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ]
        )

    def invoke(self, prompt: str) -> str:
        """Send a single user message and return the first choice's text."""
        return self.chat([{"role": "user", "content": prompt}]).text

    def chat(self, messages: list[dict[str, str]]) -> Completion:
        """
        Call the endpoint with a list of chat messages.

        Args:
            messages: OpenAI-style ``{"role", "content"}`` mappings

        Returns:
            The parsed Completion (possibly with zero choices)

        Raises:
            CompletionError: If the request fails or the response is malformed
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": self.stream,
        }

        for attempt in range(self.max_retries):
            try:
                response = requests.post(
                    self.endpoint_url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout,
                    stream=self.stream,
                )
                response.raise_for_status()
                if self.stream:
                    return self._read_stream(response)
                return self._read_json(response)

            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status in (502, 503, 504) and attempt < self.max_retries - 1:
                    self._wait(attempt, f"Endpoint returned {status}")
                    continue
                raise CompletionError("completion", f"request failed: {e}") from e

            except (requests.Timeout, requests.ConnectionError) as e:
                if attempt < self.max_retries - 1:
                    self._wait(attempt, f"Connection error: {e}")
                    continue
                raise CompletionError("completion", f"request failed: {e}") from e

            except requests.RequestException as e:
                raise CompletionError("completion", f"request failed: {e}") from e

        raise CompletionError("completion", "all retry attempts failed")

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            token = self.api_key.removeprefix("Bearer ")
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _wait(self, attempt: int, reason: str) -> None:
        delay = self.retry_delay * (2 ** attempt)
        logger.warning(
            f"{reason}, retrying in {delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
        )
        time.sleep(delay)

    def _read_json(self, response: requests.Response) -> Completion:
        try:
            result = response.json()
            choices = [
                Choice(content=choice["message"]["content"] or "")
                for choice in result.get("choices") or []
            ]
        except (ValueError, KeyError, TypeError) as e:
            raise CompletionError("completion", f"malformed response: {e}") from e
        return Completion(choices=choices)

    def _read_stream(self, response: requests.Response) -> Completion:
        """
        Accumulate a server-sent-event stream into a single choice.

        Blank lines and ``:`` comment lines are skipped, as are data lines
        that are not valid JSON. A stream that never carried a choice yields
        a Completion with no choices.
        """
        if response.encoding is None:
            response.encoding = "utf-8"

        fragments: list[str] = []
        saw_choice = False
        for raw_line in response.iter_lines(decode_unicode=True):
            line = (raw_line or "").strip()
            if not line or line.startswith(":"):
                continue
            if not line.startswith("data:"):
                continue

            data = line[len("data:"):].strip()
            if data == DONE_SENTINEL:
                break

            try:
                event = json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"Skipping undecodable stream fragment: {data[:80]}")
                continue

            choices = event.get("choices") or []
            if not choices:
                continue
            saw_choice = True
            delta = choices[0].get("delta") or {}
            content = delta.get("content")
            if content:
                fragments.append(content)

        if not saw_choice:
            return Completion()
        return Completion(choices=[Choice(content="".join(fragments))])
