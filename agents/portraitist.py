"""
Portraitist — 16-bit pixel-art avatar sprites for character sheets.
"""

import logging
from typing import Optional

from agents.tools.gemini_tool import GeminiClient
from models.characters import Character

logger = logging.getLogger('Portraitist')

AVATAR_FAILURE = "The muses of creation are silent. Could not generate avatar."

OUTPUT_RULES = """**CRITICAL OUTPUT RULES:**
1. **TRANSPARENT BACKGROUND:** The background MUST be fully transparent (PNG with alpha). No colors, shapes or scenery behind the character.
2. **NO TEXT:** No letters or numbers anywhere on the image.
3. **COMPOSITION:** The character stands centered and fully visible in a square frame."""


def build_avatar_prompt(character: Character, refinement: Optional[str] = None) -> str:
    traits = ", ".join(character.personality_traits) or "Unremarkable"
    lines = [
        "Create a single, full-body 16-bit pixel art character sprite of a Dungeons and Dragons character. "
        "The style is clean and well-defined, like classic 16-bit JRPGs.",
        "",
        f"The character is {character.name}, a level {character.level} {character.race} {character.char_class}.",
        f"- **Personality:** {traits}.",
        f"- **Greatest Fear:** {character.fears}",
        f"- **Description for Visuals:** {character.backstory}",
    ]
    if refinement:
        lines += ["", f"**DM's Refinement Instructions:** {refinement}"]
    lines += [
        "",
        "Let personality and fear shape posture and expression: a 'Brave' character stands tall, "
        "a 'Clumsy' one looks slightly off-balance.",
        "",
        OUTPUT_RULES,
    ]
    return "\n".join(lines)


class Portraitist:
    def __init__(self, gemini: GeminiClient):
        self.gemini = gemini

    async def paint(self, character: Character, refinement: Optional[str] = None) -> bytes:
        """Return PNG bytes for the character's avatar."""
        logger.info(f"Painting avatar for {character.name}" + (" (refined)" if refinement else ""))
        return await self.gemini.generate_image(
            build_avatar_prompt(character, refinement),
            aspect_ratio="1:1",
            mime_type="image/png",
            failure_message=AVATAR_FAILURE,
        )
