"""Pytest fixtures for the prompt suite."""

import json
from typing import Any, Dict, Generator, List

import pytest
from fastapi.testclient import TestClient

import main
from pipeline import PipelineSession

CHARACTER_RESULT = {
    "character_prompt": "A",
    "negative_prompt": "deformed hands",
    "technical_settings": "85mm, soft key light",
    "explanation": "Winter in Paris calls for a wool coat.",
}

INTERIOR_RESULT = {
    "interior_prompt": "B",
    "negative_prompt": "people, text",
    "lighting_atmosphere": "golden hour through tall windows",
    "composition_guide": "eye-level wide angle",
    "explanation": "Warm minimalism.",
}

COMPOSITE_RESULT = {
    "master_prompt": "A sitting on the sofa in B",
    "negative_prompt": "floating feet",
    "lighting_integration": "rim light from the window",
    "explanation": "Sitting interaction with contact shadows.",
}


class FakeCompleter:
    """Records every instruction and replays queued payloads or errors."""

    def __init__(self, replies: List[Any] | None = None) -> None:
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *replies: Any) -> "FakeCompleter":
        self.replies.extend(replies)
        return self

    def complete(self, instruction: str, system_instruction: str, response_schema: Dict[str, Any]) -> str:
        self.calls.append(
            {
                "instruction": instruction,
                "system_instruction": system_instruction,
                "response_schema": response_schema,
            }
        )
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


@pytest.fixture
def fake_completer() -> FakeCompleter:
    return FakeCompleter()


@pytest.fixture
def session(fake_completer: FakeCompleter) -> PipelineSession:
    return PipelineSession(completer=fake_completer)


@pytest.fixture
def client(session: PipelineSession, fake_completer: FakeCompleter) -> Generator[TestClient, None, None]:
    """Test client wired to a fresh session and the fake backend."""
    main.app.state.session = session
    main.app.dependency_overrides[main.get_completer] = lambda: fake_completer
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
