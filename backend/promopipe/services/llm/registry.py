"""Provider registry for LLM adapters.

Routes model IDs to the correct adapter implementation based on the model
ID prefix. Supports Vertex AI (gemini- prefix) and Ollama (ollama/ prefix).
"""

import logging

from promopipe.config import settings
from promopipe.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)


def _is_ollama_model(model_id: str) -> bool:
    """Return True if the model ID uses the ollama/ prefix."""
    return model_id.startswith("ollama/")


def get_adapter(model_id: str) -> LLMAdapter:
    """Return the appropriate LLM adapter for the given model ID.

    Routing logic:
    - "ollama/*"  -> OllamaAdapter (endpoint and key from settings.ollama)
    - anything else -> VertexAIAdapter

    Args:
        model_id: Model identifier string (e.g., "gemini-2.5-pro",
                  "ollama/qwen2.5-coder").

    Returns:
        Configured LLMAdapter instance ready for use.
    """
    if _is_ollama_model(model_id):
        from promopipe.services.llm.ollama_adapter import OllamaAdapter

        base_url = settings.ollama.endpoint
        api_key = settings.ollama.api_key
        logger.debug(
            "Routing %s to OllamaAdapter (base_url=%s, has_key=%s)",
            model_id,
            base_url,
            bool(api_key),
        )
        return OllamaAdapter(model_id=model_id, base_url=base_url, api_key=api_key)

    # Default: Vertex AI (handles gemini- models and anything else)
    from promopipe.services.llm.vertex_adapter import VertexAIAdapter

    logger.debug("Routing %s to VertexAIAdapter", model_id)
    return VertexAIAdapter(model_id=model_id)
