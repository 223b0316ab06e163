"""Tests for the model client - prompts, response parsing and transport."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from querypilot.models import GenerationRequest, ModelConfig, RepairRequest
from querypilot.utils.call_llm import (
    SUPPORTED_FUNCTIONS,
    SYSTEM_PROMPT,
    ModelClient,
    ModelConfigError,
    ModelResponseError,
    build_generation_prompt,
    build_repair_prompt,
    parse_model_response,
    resolve_base_url,
    validate_model_config,
)


def _completion(content):
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    return completion


@pytest.fixture
def mock_async_openai():
    """Patches AsyncOpenAI and yields (client class mock, client mock)."""
    with patch("querypilot.utils.call_llm.AsyncOpenAI") as client_class:
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            return_value=_completion('{"sql": "SELECT 1", "reasoning": "trivial"}')
        )
        client_class.return_value = client
        yield client_class, client


class TestParseModelResponse:
    """Test extraction of SQL from model output."""

    def test_plain_json(self) -> None:
        response = parse_model_response('{"sql": "SELECT 1", "reasoning": "because"}')
        assert response.query_text == "SELECT 1"
        assert response.rationale == "because"

    def test_fenced_json_with_chatter(self) -> None:
        content = 'Here you go:\n```json\n{"sql": "SELECT a FROM t", "reasoning": "r"}\n```\nEnjoy.'
        response = parse_model_response(content)
        assert response.query_text == "SELECT a FROM t"

    def test_fenced_yaml(self) -> None:
        content = "```yaml\nreasoning: sum by region\nsql: |\n  SELECT region\n  FROM t\n```"
        response = parse_model_response(content)
        assert response.query_text == "SELECT region\nFROM t"
        assert response.rationale == "sum by region"

    def test_embedded_object(self) -> None:
        response = parse_model_response('Answer: {"sql": "SELECT 2"} done')
        assert response.query_text == "SELECT 2"
        assert response.rationale is None

    def test_fenced_sql_block(self) -> None:
        response = parse_model_response("```sql\nSELECT 3\n```")
        assert response.query_text == "SELECT 3"

    def test_bare_sql_after_prose(self) -> None:
        response = parse_model_response("Try this query: SELECT 4 FROM t")
        assert response.query_text == "SELECT 4 FROM t"

    def test_raw_text_with_backticks(self) -> None:
        response = parse_model_response("`SELECT 5`")
        assert response.query_text == "SELECT 5"

    def test_empty_sql_in_json_falls_back_to_text(self) -> None:
        response = parse_model_response('{"sql": ""}')
        assert response.query_text == '{"sql": ""}'

    @pytest.mark.parametrize("content", ["", "   ", "``````"])
    def test_empty_output_raises(self, content) -> None:
        with pytest.raises(ModelResponseError):
            parse_model_response(content)


class TestPrompts:
    """Test prompt construction."""

    def test_generation_prompt_sections(self) -> None:
        prompt = build_generation_prompt(
            GenerationRequest(
                prompt="total sales",
                source="sales.csv",
                previous_query_text="SELECT 1",
                data_preview='{"header": ["a"]}',
            )
        )

        assert prompt.startswith("## User request\ntotal sales\n")
        assert "## Data sources\nsales.csv\n" in prompt
        assert "## Previous SQL for reference\nSELECT 1\n" in prompt
        assert '## Sample data (JSON)\n{"header": ["a"]}\n' in prompt
        assert prompt.endswith(SUPPORTED_FUNCTIONS)

    def test_generation_prompt_skips_blank_sections(self) -> None:
        prompt = build_generation_prompt(GenerationRequest(prompt="q", source="  "))
        assert "## Data sources" not in prompt
        assert "## Previous SQL" not in prompt

    def test_repair_prompt_sections(self) -> None:
        prompt = build_repair_prompt(
            RepairRequest(
                prompt="total sales",
                failed_query_text="SELECT region_name FROM t",
                error_message="no such column: region_name",
                attempt=2,
            )
        )

        assert "## Latest SQL (needs fixing)\nSELECT region_name FROM t\n" in prompt
        assert "## Error message\nno such column: region_name\n" in prompt
        assert "## Current attempt\n2\n" in prompt

    def test_system_prompt_requests_json(self) -> None:
        assert '{"sql": "...", "reasoning": "..."}' in SYSTEM_PROMPT


class TestConfigValidation:
    """Test model config checks."""

    @pytest.mark.parametrize(
        ("field", "message"),
        [
            ("endpoint", "endpoint"),
            ("credential", "API key"),
            ("model_name", "Model name"),
        ],
    )
    def test_blank_fields_rejected(self, model_config, field, message) -> None:
        config = ModelConfig(**{**model_config.model_dump(), field: "  "})
        with pytest.raises(ModelConfigError, match=message):
            validate_model_config(config)

    def test_resolve_base_url(self) -> None:
        assert resolve_base_url("https://x.test/v1/") == "https://x.test/v1"
        assert resolve_base_url("https://x.test/v1/chat/completions") == "https://x.test/v1"

    def test_secret_is_hidden(self, model_config) -> None:
        assert "sk-test-123" not in repr(model_config)
        assert "sk-test-123" not in str(model_config.loggable())
        assert model_config.to_storage()["credential"] == "sk-test-123"


class TestModelClient:
    """Test calls through the OpenAI SDK."""

    def test_generate_query(self, mock_async_openai, model_config) -> None:
        client_class, client = mock_async_openai

        response = asyncio.run(
            ModelClient().generate_query(GenerationRequest(prompt="q"), model_config)
        )

        assert response.query_text == "SELECT 1"
        assert response.rationale == "trivial"
        kwargs = client_class.call_args.kwargs
        assert kwargs["api_key"] == "sk-test-123"
        assert kwargs["base_url"] == "https://example.test/v1"
        assert kwargs["timeout"] == 60.0

    def test_clamps_tokens_and_sends_system_prompt(self, mock_async_openai, model_config) -> None:
        _, client = mock_async_openai
        config = model_config.model_copy(update={"max_tokens": 300, "temperature": 0.7})

        asyncio.run(ModelClient().generate_query(GenerationRequest(prompt="q"), config))

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["max_tokens"] == 512
        assert kwargs["temperature"] == 0.7
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}

    def test_repair_query_uses_repair_prompt(self, mock_async_openai, model_config) -> None:
        _, client = mock_async_openai
        request = RepairRequest(
            prompt="q", failed_query_text="SELECT x", error_message="boom", attempt=1
        )

        asyncio.run(ModelClient().repair_query(request, model_config))

        user_message = client.chat.completions.create.await_args.kwargs["messages"][1]
        assert "## Error message\nboom" in user_message["content"]

    def test_invalid_config_makes_no_request(self, mock_async_openai, model_config) -> None:
        client_class, _ = mock_async_openai
        config = model_config.model_copy(update={"model_name": ""})

        with pytest.raises(ModelConfigError):
            asyncio.run(ModelClient().generate_query(GenerationRequest(prompt="q"), config))

        client_class.assert_not_called()

    def test_empty_content_raises(self, mock_async_openai, model_config) -> None:
        _, client = mock_async_openai
        client.chat.completions.create.return_value = _completion(None)

        with pytest.raises(ModelResponseError, match="empty"):
            asyncio.run(ModelClient().generate_query(GenerationRequest(prompt="q"), model_config))

    def test_transport_errors_are_retried(self, mock_async_openai, model_config) -> None:
        _, client = mock_async_openai
        request = httpx.Request("POST", "https://example.test/v1/chat/completions")
        client.chat.completions.create.side_effect = [
            openai.APIConnectionError(request=request),
            _completion('{"sql": "SELECT 9"}'),
        ]

        response = asyncio.run(
            ModelClient(transport_retries=3, min_wait=0, max_wait=0).generate_query(
                GenerationRequest(prompt="q"), model_config
            )
        )

        assert response.query_text == "SELECT 9"
        assert client.chat.completions.create.await_count == 2

    def test_exhausted_transport_errors_surface(self, mock_async_openai, model_config) -> None:
        _, client = mock_async_openai
        request = httpx.Request("POST", "https://example.test/v1/chat/completions")
        client.chat.completions.create.side_effect = openai.APIConnectionError(request=request)

        with pytest.raises(ModelResponseError, match="Model request failed"):
            asyncio.run(
                ModelClient(transport_retries=2, min_wait=0, max_wait=0).generate_query(
                    GenerationRequest(prompt="q"), model_config
                )
            )

        assert client.chat.completions.create.await_count == 2
