stage1_system_instruction = """
<ROLE>
You are an expert AI Prompt Engineer and Fashion Stylist for an enterprise creative engine.
Your task is to convert detailed marketing persona data into a high-fidelity, photorealistic image generation prompt for ONE character.
</ROLE>

<INPUT_STRUCTURE>
1) Region & Schedule: City, Region and Target Date.
   CRITICAL: the season and weather you deduce from City + Date dictate the clothing (e.g., Paris in January = winter coat).
2) Persona: Age, Gender, Job, Ethnicity.
   Dictates facial features, vibe and styling (e.g., Engineer = smart casual / tech-chic).
3) Output Control: Casting, Diversity Mode, Aspect Ratio.
   Affects composition and subject count.
</INPUT_STRUCTURE>

<LOGIC>
- Seasonality: always work out the likely weather for the given City and Date yourself.
- Style: merge the Job context with the City vibe (e.g., NYC finance vs. Bali nomad).
- Diversity Mode:
  - SAFE: standard commercial balance. Safe and broadly appealing, no exaggeration.
  - FULL: diversity, equity and inclusion focused. Actively include diverse features, realistic skin textures and a broader style range.
  - OFF: minimal diversity. Strictly follow the provided input values without adding unrequested variation or interpretation.
</LOGIC>

<OUTPUT_REQUIREMENTS>
- Use specific fashion terminology for fabrics and cuts.
- Describe expression and pose so they carry the confidence of the Job.
- Keep the background minimal (the interior is generated separately), but light the character as the implied environment would.
- Frame for the requested Aspect Ratio: full body for tall/lookbook ratios, portrait framing for square or close crops.
</OUTPUT_REQUIREMENTS>
"""

stage1_response_schema = {
    "type": "OBJECT",
    "properties": {
        "character_prompt": {
            "type": "STRING",
            "description": "Main prompt describing the character's appearance, outfit and pose, reflecting job, season/weather and regional character.",
        },
        "negative_prompt": {
            "type": "STRING",
            "description": "Terms to exclude for quality (e.g., deformed, bad anatomy).",
        },
        "technical_settings": {
            "type": "STRING",
            "description": "Camera angle, lighting and style keywords, including framing suited to the aspect ratio.",
        },
        "explanation": {
            "type": "STRING",
            "description": "Why the outfit and styling were chosen for this persona, region and date.",
        },
    },
    "required": ["character_prompt", "negative_prompt", "technical_settings"],
}

stage1_rules = [
    "Reflect accurate seasonality and weather for the given date and city in the outfit.",
    "Propose modern, refined professional or lifestyle styling based on the job.",
    "Adjust skin tone and facial individuality according to the diversity mode.",
    "Suggest full-body or portrait framing to match the aspect ratio.",
]


stage2_system_instruction = """
<ROLE>
You are an expert AI Interior Designer and Architectural Photographer.
Your task is to create high-end prompts for photorealistic backgrounds and interiors, optionally featuring specific products or furniture.
</ROLE>

<CRITICAL_RULES>
1) NO HUMANS: the prompt must explicitly enforce an empty scene (e.g., "nobody, empty room").
2) Subject: focus on architecture, furniture styling, main object placement and atmospheric lighting.
3) Quality: use keywords such as 'architectural digest style', '8k', 'hyperrealistic', 'product shot'.
4) Purpose: a character will be composited into this background later. Keep the camera perspective grounded (eye-level or slightly low angle).
</CRITICAL_RULES>

<INPUT_ANALYSIS>
- Translate abstract mood descriptions into concrete lighting setups (e.g., "sad" -> "overcast, cool blue tones, dim lighting").
- If unspecified, default to a 'Modern Minimalist' style with 'Natural Lighting'.
- When a matching character context is provided, harmonize style, lighting and camera angle with it.
</INPUT_ANALYSIS>
"""

stage2_response_schema = {
    "type": "OBJECT",
    "properties": {
        "interior_prompt": {
            "type": "STRING",
            "description": "Main prompt describing the space, furniture, key objects and materials.",
        },
        "negative_prompt": {
            "type": "STRING",
            "description": "Elements to exclude (e.g., people, animals, text, blur).",
        },
        "lighting_atmosphere": {
            "type": "STRING",
            "description": "Lighting setup and mood keywords (e.g., volumetric lighting, cozy).",
        },
        "composition_guide": {
            "type": "STRING",
            "description": "Camera angle and composition (e.g., wide angle, depth of field).",
        },
        "explanation": {
            "type": "STRING",
            "description": "Notes on the chosen interior style and lighting.",
        },
    },
    "required": ["interior_prompt", "negative_prompt", "lighting_atmosphere", "composition_guide"],
}

stage2_rules = [
    "Never include people or animals (empty room, no humans).",
    "Frame the space with room for a character to be placed (center focused).",
    "Highlight key objects such as products or furniture with lighting.",
    "Aim for architectural photography quality.",
    "Describe lighting and material textures concretely.",
]


stage3_system_instruction = """
<ROLE>
You are an expert Art Director and Cinematographer.
Your task is to merge a [Character Prompt] and an [Interior/Object Prompt] into a single, seamless Master Prompt.
</ROLE>

<GOALS>
1) Interaction: explicitly describe how the character interacts with the main object or furniture from the interior, following the requested Interaction Mode.
   - Sitting: the pose must be 'sitting on [interior object]'.
   - Holding: the hand pose must be 'holding [interior object]'.
   - Leaning: the character leans against the furniture or wall.
   - Touching/Using: the character's hands touch or operate the object.
   - Standing Next To: the character stands beside the object.
   - No Interaction: simple placement at a natural distance.
2) Integration: the character must look physically present. Mention contact shadows.
3) Lighting Match: the character is lit by the room's light (e.g., warm sunlight in the room means warm sunlight on the character), matching its direction.
4) Syntax: use standard prompt syntax (Subject + Action + Environment + Technical Specs).
</GOALS>

<INPUT_HANDLING>
- Combine Source 1 (person) with Source 2 (background/object).
- Apply the Interaction Mode requested by the user.
</INPUT_HANDLING>
"""

stage3_response_schema = {
    "type": "OBJECT",
    "properties": {
        "master_prompt": {
            "type": "STRING",
            "description": "Final image generation prompt integrating character, background and object interaction.",
        },
        "negative_prompt": {
            "type": "STRING",
            "description": "Compositing failure guards (e.g., floating feet, clipping limbs, unnatural hands).",
        },
        "lighting_integration": {
            "type": "STRING",
            "description": "Concrete instructions for blending character and background lighting (e.g., rim light matching the window).",
        },
        "explanation": {
            "type": "STRING",
            "description": "Compositing strategy and the intent behind the object interaction.",
        },
    },
    "required": ["master_prompt", "negative_prompt", "lighting_integration", "explanation"],
}

stage3_rules = [
    "Always match the lighting direction of character and background (coherent lighting).",
    "State the character's interaction with key interior objects (sitting on, holding, etc.).",
    "Emphasize contact shadows so the character blends in rather than floats.",
    "Unify the overall tone and manner.",
]


REGION_CITY_MAP = {
    "Europe": [
        "London", "Paris", "Berlin", "Madrid", "Rome", "Amsterdam", "Barcelona",
        "Vienna", "Prague", "Budapest", "Lisbon", "Dublin", "Brussels",
        "Copenhagen", "Stockholm", "Oslo", "Helsinki", "Zurich", "Munich", "Istanbul",
    ],
    "Latin America": [
        "São Paulo", "Rio de Janeiro", "Brasília", "Belo Horizonte", "Buenos Aires",
        "Córdoba", "Santiago", "Valparaíso", "Lima", "Cusco", "Bogotá", "Medellín",
        "Cartagena", "Caracas", "Quito", "Guayaquil", "La Paz",
        "Santa Cruz de la Sierra", "Montevideo", "Asunción",
    ],
}

stage1_options = {
    "regions": list(REGION_CITY_MAP),
    "genders": ["Female", "Male", "Non-binary", "Not Specified"],
    "ethnicities": [
        "White",
        "Black",
        "Indigenous",
        "Asian",
        "Mixed / Multiracial",
        "Another ethnicity",
        "Prefer not to say",
    ],
    "casting_modes": ["Single", "Couple", "Family", "Group"],
    "diversity_modes": [
        {"value": "SAFE", "label": "SAFE (default)", "desc": "Baseline balance without excessive diversity expansion."},
        {"value": "FULL", "label": "FULL (DEI)", "desc": "Actively broaden people and style range."},
        {"value": "OFF", "label": "OFF (minimal)", "desc": "Minimal diversity, anchored on the inputs."},
    ],
    "aspect_ratios": ["4:5 (lookbook)", "1:1 (square)", "16:9 (cinematic)", "9:16 (reels/shorts)"],
}

stage2_options = {
    "room_types": [
        "Modern Living Room",
        "Product Showcase",
        "Tech Office",
        "Luxury Hotel Lobby",
        "Minimalist Studio",
        "Cyberpunk Street",
        "Fantasy Library",
    ],
    "styles": ["Minimalist", "Industrial", "Mid-Century Modern", "Futuristic", "Nordic", "Vintage"],
    "lighting": ["Natural Morning Sun", "Golden Hour", "Studio Softbox", "Cinematic Dark", "Neon Glow"],
}

stage3_options = {
    "shot_types": ["Full Body Shot", "Cowboy Shot", "Waist Up", "Close Up", "Wide Angle"],
    "lighting_balance": ["Balanced", "Character Focused", "Product/Object Focused", "Atmosphere Focused"],
    "camera_positions": ["Eye Level", "Low Angle (Heroic)", "High Angle", "Dutch Angle (Dynamic)"],
    "interactions": [
        "No Interaction",
        "Holding Object",
        "Sitting On",
        "Leaning Against",
        "Touching/Using",
        "Standing Next To",
    ],
}


STAGE_CATALOGUE = {
    1: {
        "title": "Character",
        "system_instruction": stage1_system_instruction,
        "response_schema": stage1_response_schema,
        "rules": stage1_rules,
        "options": stage1_options,
    },
    2: {
        "title": "Interior",
        "system_instruction": stage2_system_instruction,
        "response_schema": stage2_response_schema,
        "rules": stage2_rules,
        "options": stage2_options,
    },
    3: {
        "title": "Composite",
        "system_instruction": stage3_system_instruction,
        "response_schema": stage3_response_schema,
        "rules": stage3_rules,
        "options": stage3_options,
    },
}


def derive_default_city(region: str) -> str:
    cities = REGION_CITY_MAP.get(region) or []
    return cities[0] if cities else ""
