import pytest

from conftest import CHARACTER_RESULT, INTERIOR_RESULT
from prompt_builders import (
    CharacterInput,
    CompositionInput,
    InteriorInput,
    PreconditionError,
    build_character_request,
    build_composite_request,
    build_interior_request,
)
from prompts_lib import REGION_CITY_MAP, STAGE_CATALOGUE, derive_default_city


def test_derive_default_city_picks_first_city():
    assert derive_default_city("Europe") == "London"
    assert derive_default_city("Latin America") == "São Paulo"
    assert derive_default_city("Atlantis") == ""


def test_character_input_defaults_follow_region():
    form = CharacterInput()
    assert form.city == REGION_CITY_MAP[form.region][0]


def test_character_request_carries_every_field():
    form = CharacterInput(
        region="Europe",
        city="Paris",
        target_date="2026-01-15",
        age="42",
        gender="Male",
        job="Architect",
        ethnicity="Black",
        casting_mode="Couple",
        diversity_mode="FULL",
        aspect_ratio="16:9 (cinematic)",
        details="Holding a rolled blueprint.",
    )
    text = build_character_request(form)

    for value in ("Paris", "2026-01-15", "42", "Male", "Architect", "Black", "Couple", "FULL", "16:9", "blueprint"):
        assert value in text


def test_character_request_without_date_or_details():
    text = build_character_request(CharacterInput(target_date="", details="  "))

    assert "Target Date: Not specified" in text
    assert "[ADDITIONAL DETAILS]" not in text


def test_character_request_is_deterministic():
    form = CharacterInput(target_date="2026-07-01")
    assert build_character_request(form) == build_character_request(form)


def test_interior_request_without_character_is_explicitly_standalone():
    text = build_interior_request(InteriorInput(room_type="Tech Office"), None)

    assert text.startswith("[CONTEXT]\nNo specific character context provided.")
    assert "Room Type: Tech Office" in text


def test_interior_request_embeds_character_context():
    text = build_interior_request(InteriorInput(), CHARACTER_RESULT)

    assert "[CONTEXT: MATCHING CHARACTER]" in text
    assert f'"{CHARACTER_RESULT["character_prompt"]}"' in text
    assert CHARACTER_RESULT["technical_settings"] in text


@pytest.mark.parametrize(
    "character, interior, missing",
    [
        (None, INTERIOR_RESULT, "character"),
        (CHARACTER_RESULT, None, "interior"),
    ],
)
def test_composite_request_requires_both_sources(character, interior, missing):
    with pytest.raises(PreconditionError, match=missing):
        build_composite_request(CompositionInput(), character, interior)


def test_composite_request_merges_sources_and_settings():
    form = CompositionInput(
        shot_type="Waist Up",
        lighting_balance="Character Focused",
        camera_position="Low Angle (Heroic)",
        interaction="Holding Object",
        directives="Looking at the camera.",
    )
    text = build_composite_request(form, CHARACTER_RESULT, INTERIOR_RESULT)

    assert "(Negative: deformed hands)" in text
    assert "(Lighting: golden hour through tall windows)" in text
    assert "Interaction Mode: Holding Object" in text
    assert "Looking at the camera." in text
    assert text.endswith("Action: Merge these into a single cohesive Master Prompt.")


def test_catalogue_schemas_match_stage_contracts():
    assert STAGE_CATALOGUE[1]["response_schema"]["required"] == [
        "character_prompt",
        "negative_prompt",
        "technical_settings",
    ]
    assert STAGE_CATALOGUE[2]["response_schema"]["required"] == [
        "interior_prompt",
        "negative_prompt",
        "lighting_atmosphere",
        "composition_guide",
    ]
    assert "explanation" in STAGE_CATALOGUE[3]["response_schema"]["required"]
    assert "NO HUMANS" in STAGE_CATALOGUE[2]["system_instruction"]
    assert "contact shadows" in STAGE_CATALOGUE[3]["system_instruction"]
