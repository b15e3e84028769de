from typing import Optional

# ----------------- SYSTEM PROMPTS -----------------

BASE_TRANSFORM_PROMPT = """Transform this 3D rendered room into a photorealistic photograph.
Maintain the exact same layout, furniture placement, camera angle, and composition.
Add realistic lighting, textures, materials, shadows, and subtle imperfections that make it look like a real photograph.
Enhance surfaces with realistic materials: wood grain, fabric textures, metal reflections, glass transparency, etc.
Keep the same color scheme but make it look naturally lit and photographed with a high-quality camera."""

SCENE_ANALYSIS_PROMPT = """Analyze this 3D rendered room and list every specific item you can identify.
Be literal and precise. Where a brand or model is recognizable, name it.

1. Furniture (with brands/models if recognizable)
2. Appliances and electronics (with brands/models if recognizable)
3. Flooring (material, finish, pattern)
4. Wall finishes (paint, tile, paneling, wallpaper)
5. Lighting fixtures (type, style, finish)
6. Decor and accessories (art, plants, textiles, objects)
7. Architectural features (windows, doors, moldings, ceilings, built-ins)

Return a concise list grouped under these seven headings."""

SCENE_SECTION_HEADER = (
    "Scene details identified in the render. Reproduce these specific items, "
    "brands and materials faithfully:"
)
INSTRUCTIONS_SECTION_HEADER = "Additional instructions:"


def build_transformation_prompt(
    scene_analysis: Optional[str] = None,
    instructions: Optional[str] = None,
    base_prompt: str = BASE_TRANSFORM_PROMPT,
) -> str:
    """
    Compose the final prompt: base, then scene analysis, then user instructions.
    Blank optional parts are left out, so with neither the base comes back as is.
    """
    parts = [base_prompt]

    scene_text = (scene_analysis or "").strip()
    if scene_text:
        parts.append(f"{SCENE_SECTION_HEADER}\n{scene_text}")

    instruction_text = (instructions or "").strip()
    if instruction_text:
        parts.append(f"{INSTRUCTIONS_SECTION_HEADER}\n{instruction_text}")

    return "\n\n".join(parts)
