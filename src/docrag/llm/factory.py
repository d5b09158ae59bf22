"""
LLM factory for creating completion clients from configuration.
"""

from typing import Protocol

from docrag.llm.client import Completion


class CompletionProtocol(Protocol):
    """Protocol that all completion clients must implement."""

    def complete(self, system_prompt: str, user_prompt: str) -> Completion:
        """Send a system + user message pair."""
        ...

    def chat(self, messages: list[dict[str, str]]) -> Completion:
        """Send an arbitrary message list."""
        ...


def create_llm(
    temperature: float | None = None,
    stream: bool | None = None,
) -> CompletionProtocol:
    """
    Create a completion client from configuration settings.

    Args:
        temperature: Optional temperature override. If None, uses settings.llm_temperature
        stream: Optional streaming override. If None, uses settings.llm_stream

    Returns:
        Client implementing CompletionProtocol
    """
    from docrag.config import settings
    from docrag.llm.client import ChatCompletionClient

    return ChatCompletionClient(
        base_url=settings.query_llm_base_url,
        model=settings.query_llm_model,
        api_key=settings.query_llm_key_value,
        temperature=temperature if temperature is not None else settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout,
        max_retries=settings.llm_max_retries,
        stream=stream if stream is not None else settings.llm_stream,
    )
