"""LLM clients for docrag."""

from docrag.llm.client import ChatCompletionClient, Choice, Completion
from docrag.llm.factory import CompletionProtocol, create_llm

__all__ = ["ChatCompletionClient", "Choice", "Completion", "CompletionProtocol", "create_llm"]
