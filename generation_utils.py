from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx
from google import genai
from google.genai import types
from openai import OpenAI

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "gemini": "gemini-3-flash-preview",
    "openai": "gpt-4.1-2025-04-14",
    "grok": "grok-4",
}

GROK_BASE_URL = "https://api.x.ai/v1"


class CompletionError(RuntimeError):
    """The generative backend call failed."""


class EmptyResponseError(CompletionError):
    """The backend answered without any text payload."""


class ResponseValidationError(ValueError):
    pass


class ResponseParseError(ResponseValidationError):
    pass


class MissingFieldError(ResponseValidationError):
    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Response is missing required fields: {', '.join(missing)}")


def normalize_service(value: str) -> str:
    key = (value or "").strip().lower()
    if key in {"openai", "gpt"}:
        return "openai"
    if key in {"grok", "xai", "x.ai"}:
        return "grok"
    return "gemini"


def _to_json_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    # Gemini schemas spell types in upper case; JSON Schema wants lower case.
    converted: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            converted[key] = value.lower()
        elif key == "properties" and isinstance(value, dict):
            converted[key] = {name: _to_json_schema(prop) for name, prop in value.items()}
        elif key == "items" and isinstance(value, dict):
            converted[key] = _to_json_schema(value)
        else:
            converted[key] = value
    return converted


def _describe_http_error(exc: Exception) -> str:
    error_body = ""
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if response is not None:
        try:
            error_body = response.text
        except Exception:
            error_body = ""
    status_line = f" {status_code}" if status_code else ""
    detail_line = f": {error_body}" if error_body else ""
    return f"HTTP{status_line}{detail_line} {exc}"


def generate_gemini_structured(
    instruction: str,
    system_instruction: str,
    response_schema: Dict[str, Any],
    api_key: str,
    model: str = DEFAULT_MODELS["gemini"],
    temperature: float = 1.0,
) -> str:
    try:
        client = genai.Client(api_key=api_key)
        response = client.models.generate_content(
            model=model,
            contents=instruction,
            config=types.GenerateContentConfig(
                system_instruction=system_instruction,
                temperature=temperature,
                response_mime_type="application/json",
                response_schema=response_schema,
            ),
        )
    except Exception as exc:
        raise CompletionError(f"Gemini API error: {exc}") from exc

    text = getattr(response, "text", None)
    if not text:
        raise EmptyResponseError("Gemini response was empty.")
    return text.strip()


def generate_openai_structured(
    instruction: str,
    system_instruction: str,
    response_schema: Dict[str, Any],
    api_key: str,
    model: str = DEFAULT_MODELS["openai"],
    temperature: float = 1.0,
    base_url: Optional[str] = None,
    label: str = "OpenAI",
) -> str:
    client_kwargs: Dict[str, Any] = {"api_key": api_key}
    if base_url:
        client_kwargs["base_url"] = base_url
        client_kwargs["timeout"] = httpx.Timeout(3600.0)

    try:
        client = OpenAI(**client_kwargs)
        response = client.chat.completions.create(
            model=model,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": instruction},
            ],
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": "stage_result",
                    "schema": _to_json_schema(response_schema),
                },
            },
        )
    except Exception as exc:
        raise CompletionError(f"{label} API {_describe_http_error(exc)}") from exc

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise EmptyResponseError(f"{label} response was empty.")
    return content.strip()


class CompletionClient:
    """One structured-output call per request against the configured service.

    The client never retries and never caches; every call to :meth:`complete`
    is exactly one outbound request that either returns the raw text payload
    or raises :class:`CompletionError`.
    """

    def __init__(
        self,
        service: str,
        api_key: str,
        model: Optional[str] = None,
        temperature: float = 1.0,
    ) -> None:
        self.service = normalize_service(service)
        self.api_key = api_key
        self.model = model or DEFAULT_MODELS[self.service]
        self.temperature = temperature

    def complete(
        self,
        instruction: str,
        system_instruction: str,
        response_schema: Dict[str, Any],
    ) -> str:
        logger.debug("Sending %d chars to %s (%s)", len(instruction), self.service, self.model)
        if self.service == "grok":
            return generate_openai_structured(
                instruction,
                system_instruction,
                response_schema,
                self.api_key,
                model=self.model,
                temperature=self.temperature,
                base_url=GROK_BASE_URL,
                label="Grok",
            )
        if self.service == "openai":
            return generate_openai_structured(
                instruction,
                system_instruction,
                response_schema,
                self.api_key,
                model=self.model,
                temperature=self.temperature,
            )
        return generate_gemini_structured(
            instruction,
            system_instruction,
            response_schema,
            self.api_key,
            model=self.model,
            temperature=self.temperature,
        )


def parse_stage_response(raw: Optional[str], response_schema: Dict[str, Any]) -> Dict[str, Any]:
    """Parse a backend payload and check the schema's required fields.

    Values pass through untouched. Optional ``explanation`` fields that the
    model left out come back as an empty string.
    """
    if not raw or not raw.strip():
        raise ResponseParseError("Response payload was empty.")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"Response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ResponseParseError("Response JSON is not an object.")

    required = response_schema.get("required", [])
    missing = [name for name in required if data.get(name) is None]
    if missing:
        raise MissingFieldError(missing)

    if "explanation" in response_schema.get("properties", {}) and data.get("explanation") is None:
        data["explanation"] = ""
    return data
