"""LLM provider abstraction layer.

Provides a unified async interface for structured text generation across
multiple LLM providers (Vertex AI, Ollama).

Usage:
    from promopipe.services.llm import get_adapter, LLMAdapter

    adapter = get_adapter("gemini-2.5-flash")
    result = await adapter.generate_text(prompt, MySchema)

    adapter = get_adapter("ollama/qwen2.5-coder")
    result = await adapter.generate_text(prompt, CodeOutput)
"""

from promopipe.services.llm.base import LLMAdapter
from promopipe.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
