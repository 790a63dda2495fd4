"""
CartographerAgent — AI-generated battle maps.

Produces a top-down map image (JPEG, 16:9) from the DM's description.
Storing it and creating the map record is the map manager's job.
"""

import logging

from agents.tools.gemini_tool import GeminiClient

logger = logging.getLogger('Cartographer')

MAP_FAILURE = "The cartographers of the ether are busy. Could not generate map."


# ---------------------------------------------------------------------------
# Style anchor: consistent art direction across generated maps
# ---------------------------------------------------------------------------

STYLE_PROMPT = """Generate a top-down 2D battle map for a Dungeons and Dragons game.
The style is thematic, slightly painterly but clear, fit for a fantasy setting.
The image must be from a direct top-down perspective, like a blueprint.
Details must be clear enough to use the image as a game board for character tokens.
Do not include any text, grids, or UI elements on the image."""


def build_map_prompt(description: str) -> str:
    return f'{STYLE_PROMPT}\nThe scene described is: "{description.strip()}".'


class CartographerAgent:
    """Generates battle map images."""

    def __init__(self, gemini: GeminiClient):
        self.gemini = gemini

    async def draw(self, description: str) -> bytes:
        """Return JPEG bytes for a map matching the description."""
        logger.info(f"Drawing map: {description[:80]}")
        return await self.gemini.generate_image(
            build_map_prompt(description),
            aspect_ratio="16:9",
            mime_type="image/jpeg",
            failure_message=MAP_FAILURE,
        )
