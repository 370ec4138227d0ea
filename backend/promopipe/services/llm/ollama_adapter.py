"""Ollama adapter for the LLM abstraction layer.

Connects via ollama.AsyncClient with optional auth headers and structured
JSON output via format='json' with schema instructions appended to the
system prompt. Ollama Cloud does not reliably enforce a full JSON schema
passed through ``format``, so the schema travels in the prompt instead.
"""

import json
import logging
from typing import Optional, Type

from ollama import AsyncClient
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from promopipe.services.llm.base import LLMAdapter, SchemaT

logger = logging.getLogger(__name__)


def _schema_instruction(schema: Type[SchemaT]) -> str:
    """Build a concise JSON schema instruction for the system prompt."""
    schema_json = json.dumps(schema.model_json_schema(), indent=2)
    return (
        "\n\nIMPORTANT: You MUST respond with a single JSON object (no markdown, "
        "no commentary, no code fences). The JSON must conform to this schema:\n"
        f"```json\n{schema_json}\n```\n"
        "Return ONLY the JSON object."
    )


def _strip_json_fence(raw: str) -> str:
    stripped = raw.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
        if stripped.endswith("```"):
            stripped = stripped[:-3].rstrip()
    return stripped


class OllamaAdapter(LLMAdapter):
    """LLM adapter backed by a local or cloud Ollama instance.

    Strips the "ollama/" prefix from model IDs before passing to the ollama
    library. Always passes stream=False to avoid async generator responses.
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
    ) -> None:
        self._model_id = model_id
        # The library uses bare model names
        self._ollama_model = model_id.removeprefix("ollama/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

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
        schema_suffix = _schema_instruction(schema)

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )
        async def _call() -> SchemaT:
            system = (system_prompt + schema_suffix) if system_prompt else schema_suffix.lstrip()
            messages = [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ]
            response = await self._client.chat(
                model=self._ollama_model,
                messages=messages,
                format="json",
                options={"temperature": temperature},
                stream=False,
            )
            return schema.model_validate_json(_strip_json_fence(response.message.content))

        return await _call()
