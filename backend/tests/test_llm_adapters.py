"""LLM adapter routing and Ollama structured output parsing."""

from types import SimpleNamespace

import pytest

from promopipe.pipeline.codegen import GeneratedCode
from promopipe.services.llm import get_adapter
from promopipe.services.llm.ollama_adapter import OllamaAdapter, _strip_json_fence
from promopipe.services.llm.vertex_adapter import VertexAIAdapter
from promopipe.services.vertex_client import location_for_model


def test_registry_routes_by_prefix():
    ollama = get_adapter("ollama/qwen2.5-coder")
    vertex = get_adapter("gemini-2.5-flash")

    assert isinstance(ollama, OllamaAdapter)
    assert ollama.model_id == "ollama/qwen2.5-coder"
    assert isinstance(vertex, VertexAIAdapter)


def test_global_models_use_global_location():
    assert location_for_model("gemini-3-pro-preview") == "global"


def test_strip_json_fence():
    assert _strip_json_fence('```json\n{"code": "x"}\n```') == '{"code": "x"}'
    assert _strip_json_fence('  {"code": "x"} ') == '{"code": "x"}'


@pytest.mark.asyncio
async def test_ollama_adapter_parses_schema(monkeypatch):
    adapter = OllamaAdapter("ollama/qwen2.5-coder")
    calls = []

    async def fake_chat(**kwargs):
        calls.append(kwargs)
        content = '```json\n{"code": "export const GeneratedVideo = () => null;"}\n```'
        return SimpleNamespace(message=SimpleNamespace(content=content))

    monkeypatch.setattr(adapter._client, "chat", fake_chat)

    result = await adapter.generate_text("write code", GeneratedCode, system_prompt="You code.")

    assert result.code == "export const GeneratedVideo = () => null;"
    assert calls[0]["model"] == "qwen2.5-coder"
    assert calls[0]["format"] == "json"
    assert calls[0]["messages"][0]["content"].startswith("You code.")
