"""Instruction text for each stage.

Every builder is a pure function of its form input and, for the later
stages, the upstream snapshots handed over by the coordinator. Seasonality
and other inference stay in the instruction text for the model to resolve.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from prompts_lib import REGION_CITY_MAP, derive_default_city

_DEFAULT_REGION = next(iter(REGION_CITY_MAP))


class PipelineError(Exception):
    pass


class PreconditionError(PipelineError):
    """A stage was asked to run before its upstream results exist."""


@dataclass
class CharacterInput:
    region: str = _DEFAULT_REGION
    city: str = derive_default_city(_DEFAULT_REGION)
    target_date: str = ""
    age: str = "30"
    gender: str = "Female"
    job: str = "Software Engineer"
    ethnicity: str = "Asian"
    casting_mode: str = "Single"
    diversity_mode: str = "SAFE"
    aspect_ratio: str = "4:5 (lookbook)"
    details: str = ""


@dataclass
class InteriorInput:
    room_type: str = "Modern Living Room"
    style: str = "Minimalist"
    lighting: str = "Natural Morning Sun"
    colors: str = "White and Wood"
    details: str = "Wide floor-to-ceiling windows let sunlight in; a comfortable beige sofa sits in the center."


@dataclass
class CompositionInput:
    shot_type: str = "Full Body Shot"
    lighting_balance: str = "Balanced"
    camera_position: str = "Eye Level"
    interaction: str = "No Interaction"
    directives: str = ""


def build_character_request(form: CharacterInput) -> str:
    lines = [
        "[REGION & SCHEDULE]",
        f"- Region: {form.region}",
        f"- City: {form.city}",
        f"- Target Date: {form.target_date or 'Not specified'}",
        "  * Deduce the season and likely weather for this city on this date and dress the character for it.",
        "",
        "[PERSONA]",
        f"- Age: {form.age}",
        f"- Gender: {form.gender}",
        f"- Job: {form.job}",
        f"- Ethnicity: {form.ethnicity}",
        "",
        "[OUTPUT CONTROL]",
        f"- Casting: {form.casting_mode}",
        f"- Diversity Mode: {form.diversity_mode}",
        f"- Aspect Ratio: {form.aspect_ratio}",
    ]
    if form.details.strip():
        lines += ["", "[ADDITIONAL DETAILS]", form.details.strip()]
    lines += ["", "Action: Create the character prompt."]
    return "\n".join(lines)


def build_interior_request(form: InteriorInput, character: Optional[Dict[str, Any]]) -> str:
    if character:
        context = [
            "[CONTEXT: MATCHING CHARACTER]",
            "This background is designed for a character described as:",
            f'"{character.get("character_prompt", "")}"',
            f'Style/Tone: "{character.get("technical_settings", "")}"',
            "Ensure the background style, lighting, and camera angle harmonize with this character.",
        ]
    else:
        context = [
            "[CONTEXT]",
            "No specific character context provided. Create a standalone high-quality background.",
        ]

    lines = context + [
        "",
        "[USER REQUIREMENTS]",
        "Create an interior/background prompt for:",
        f"- Room Type: {form.room_type}",
        f"- Design Style: {form.style}",
        f"- Lighting: {form.lighting}",
        f"- Color Palette: {form.colors}",
        f"- Specific Details (Objects & Furniture): {form.details}",
    ]
    return "\n".join(lines)


def build_composite_request(
    form: CompositionInput,
    character: Optional[Dict[str, Any]],
    interior: Optional[Dict[str, Any]],
) -> str:
    missing = []
    if not character:
        missing.append("character (stage 1)")
    if not interior:
        missing.append("interior (stage 2)")
    if missing:
        raise PreconditionError(f"Compositing needs accepted results from: {', '.join(missing)}")

    lines = [
        "[SOURCE 1: CHARACTER]",
        character["character_prompt"],
        f"(Negative: {character.get('negative_prompt', '')})",
        "",
        "[SOURCE 2: BACKGROUND & OBJECTS]",
        interior["interior_prompt"],
        f"(Lighting: {interior.get('lighting_atmosphere', '')})",
        "",
        "[COMPOSITION & INTERACTION SETTINGS]",
        f"- Shot Type: {form.shot_type}",
        f"- Camera Position: {form.camera_position}",
        f"- Lighting Focus: {form.lighting_balance}",
        "",
        "[CRITICAL INTERACTION INSTRUCTION]",
        f"- Interaction Mode: {form.interaction}",
        "* IMPORTANT: Modify the character's pose to match this interaction with the object/furniture defined in Source 2.",
        "",
        "[ADDITIONAL DIRECTIVES]",
        form.directives.strip() or "None.",
        "",
        "Action: Merge these into a single cohesive Master Prompt.",
    ]
    return "\n".join(lines)
