"""Tests for the completion clients and the response validator."""

import json
from unittest.mock import MagicMock, patch

import pytest

from generation_utils import (
    DEFAULT_MODELS,
    GROK_BASE_URL,
    CompletionClient,
    CompletionError,
    EmptyResponseError,
    MissingFieldError,
    ResponseParseError,
    _to_json_schema,
    generate_gemini_structured,
    generate_openai_structured,
    normalize_service,
    parse_stage_response,
)
from prompts_lib import stage1_response_schema, stage2_response_schema, stage3_response_schema


class TestParseStageResponse:
    def test_valid_payload_passes_through_unchanged(self):
        payload = {
            "character_prompt": "  spaced  ",
            "negative_prompt": "",
            "technical_settings": "50mm",
            "explanation": "why",
            "extra": 3,
        }

        assert parse_stage_response(json.dumps(payload), stage1_response_schema) == payload

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_payload(self, raw):
        with pytest.raises(ResponseParseError):
            parse_stage_response(raw, stage1_response_schema)

    def test_malformed_json(self):
        with pytest.raises(ResponseParseError, match="not valid JSON"):
            parse_stage_response('{"character_prompt": ', stage1_response_schema)

    def test_json_that_is_not_an_object(self):
        with pytest.raises(ResponseParseError):
            parse_stage_response('["character_prompt"]', stage1_response_schema)

    def test_missing_and_null_fields_are_reported_together(self):
        payload = {"interior_prompt": "room", "negative_prompt": None, "lighting_atmosphere": "soft"}

        with pytest.raises(MissingFieldError) as excinfo:
            parse_stage_response(json.dumps(payload), stage2_response_schema)

        assert excinfo.value.missing == ["negative_prompt", "composition_guide"]

    def test_optional_explanation_defaults_to_empty(self):
        payload = {"character_prompt": "a", "negative_prompt": "b", "technical_settings": "c"}

        assert parse_stage_response(json.dumps(payload), stage1_response_schema)["explanation"] == ""

    def test_composite_requires_explanation(self):
        payload = {"master_prompt": "a", "negative_prompt": "b", "lighting_integration": "c"}

        with pytest.raises(MissingFieldError):
            parse_stage_response(json.dumps(payload), stage3_response_schema)


class TestGeminiClient:
    @patch("generation_utils.genai.Client")
    def test_requests_structured_json(self, mock_client):
        mock_client.return_value.models.generate_content.return_value = MagicMock(text=' {"ok": true} ')

        text = generate_gemini_structured("instruction", "system", stage1_response_schema, "key")

        assert text == '{"ok": true}'
        mock_client.assert_called_once_with(api_key="key")
        kwargs = mock_client.return_value.models.generate_content.call_args.kwargs
        assert kwargs["model"] == DEFAULT_MODELS["gemini"]
        assert kwargs["contents"] == "instruction"
        assert kwargs["config"].system_instruction == "system"
        assert kwargs["config"].response_mime_type == "application/json"

    @patch("generation_utils.genai.Client")
    def test_empty_text_is_an_empty_response(self, mock_client):
        mock_client.return_value.models.generate_content.return_value = MagicMock(text=None)

        with pytest.raises(EmptyResponseError):
            generate_gemini_structured("instruction", "system", stage1_response_schema, "key")

    @patch("generation_utils.genai.Client")
    def test_service_errors_are_wrapped(self, mock_client):
        mock_client.return_value.models.generate_content.side_effect = ConnectionError("offline")

        with pytest.raises(CompletionError, match="Gemini API error: offline"):
            generate_gemini_structured("instruction", "system", stage1_response_schema, "key")


class TestOpenAICompatibleClient:
    @staticmethod
    def _response(content):
        message = MagicMock(content=content)
        return MagicMock(choices=[MagicMock(message=message)])

    @patch("generation_utils.OpenAI")
    def test_sends_json_schema_response_format(self, mock_openai):
        mock_openai.return_value.chat.completions.create.return_value = self._response('{"a": "b"}')

        assert generate_openai_structured("instruction", "system", stage2_response_schema, "sk") == '{"a": "b"}'
        mock_openai.assert_called_once_with(api_key="sk")
        kwargs = mock_openai.return_value.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}
        assert kwargs["messages"][1] == {"role": "user", "content": "instruction"}
        schema = kwargs["response_format"]["json_schema"]["schema"]
        assert schema["type"] == "object"
        assert schema["properties"]["interior_prompt"]["type"] == "string"

    @patch("generation_utils.OpenAI")
    def test_empty_choices(self, mock_openai):
        mock_openai.return_value.chat.completions.create.return_value = MagicMock(choices=[])

        with pytest.raises(EmptyResponseError, match="OpenAI response was empty"):
            generate_openai_structured("instruction", "system", stage2_response_schema, "sk")

    @patch("generation_utils.OpenAI")
    def test_grok_uses_xai_base_url(self, mock_openai):
        mock_openai.return_value.chat.completions.create.return_value = self._response("{}")

        client = CompletionClient("grok", "xai-key")
        client.complete("instruction", "system", stage3_response_schema)

        assert mock_openai.call_args.kwargs["base_url"] == GROK_BASE_URL
        assert mock_openai.call_args.kwargs["api_key"] == "xai-key"
        assert mock_openai.return_value.chat.completions.create.call_args.kwargs["model"] == DEFAULT_MODELS["grok"]

    @patch("generation_utils.OpenAI")
    def test_http_errors_include_status(self, mock_openai):
        error = Exception("bad request")
        error.response = MagicMock(status_code=400, text="invalid schema")
        mock_openai.return_value.chat.completions.create.side_effect = error

        with pytest.raises(CompletionError, match="OpenAI API HTTP 400: invalid schema"):
            generate_openai_structured("instruction", "system", stage2_response_schema, "sk")


class TestCompletionClient:
    @pytest.mark.parametrize(
        "value, expected",
        [("", "gemini"), ("Gemini", "gemini"), ("OPENAI", "openai"), ("xai", "grok"), ("unknown", "gemini")],
    )
    def test_normalize_service(self, value, expected):
        assert normalize_service(value) == expected

    def test_model_override(self):
        assert CompletionClient("openai", "sk").model == DEFAULT_MODELS["openai"]
        assert CompletionClient("gemini", "key", model="gemini-2.5-pro").model == "gemini-2.5-pro"

    @patch("generation_utils.generate_gemini_structured", return_value="{}")
    def test_gemini_dispatch(self, mock_generate):
        CompletionClient("gemini", "key", temperature=0.2).complete("i", "s", stage1_response_schema)

        mock_generate.assert_called_once_with(
            "i", "s", stage1_response_schema, "key", model=DEFAULT_MODELS["gemini"], temperature=0.2
        )


def test_json_schema_conversion_lowercases_types_only():
    schema = {
        "type": "OBJECT",
        "properties": {"tags": {"type": "ARRAY", "items": {"type": "STRING"}, "description": "TYPE"}},
        "required": ["tags"],
    }

    assert _to_json_schema(schema) == {
        "type": "object",
        "properties": {"tags": {"type": "array", "items": {"type": "string"}, "description": "TYPE"}},
        "required": ["tags"],
    }
