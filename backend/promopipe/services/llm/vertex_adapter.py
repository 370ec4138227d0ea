"""Vertex AI adapter for the LLM abstraction layer.

Wraps google-genai client with location-aware routing and structured output.
Uses tenacity for retry logic with configurable max_retries.
"""

import logging
from typing import Optional, Type

from google.genai import types as genai_types
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from promopipe.services.llm.base import LLMAdapter, SchemaT
from promopipe.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)


class VertexAIAdapter(LLMAdapter):
    """LLM adapter backed by Google Vertex AI (google-genai SDK).

    Supports structured JSON output via response_schema and uses the
    location-aware client cache from vertex_client.py.
    """

    def __init__(self, model_id: str) -> None:
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    async def generate_text(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> SchemaT:
        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )
        async def _call() -> SchemaT:
            client = get_vertex_client(location=location_for_model(self._model_id))
            config = genai_types.GenerateContentConfig(
                temperature=temperature,
                response_mime_type="application/json",
                response_schema=schema,
                system_instruction=system_prompt,
            )
            response = await client.aio.models.generate_content(
                model=self._model_id,
                contents=prompt,
                config=config,
            )
            return schema.model_validate_json(response.text)

        logger.debug(f"Vertex generate_text model={self._model_id} schema={schema.__name__}")
        return await _call()
