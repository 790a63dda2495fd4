"""
SceneryPainter — quick sketches of the scene being narrated.

Speed over fidelity: the image is regenerated every time the DM
dictates a new segment, so the prompt asks for a fast, simple sketch.
"""

import logging

from agents.tools.gemini_tool import GeminiClient

logger = logging.getLogger('SceneryPainter')

SCENE_FAILURE = "The muses of creation are silent. Could not generate the scene."


def build_scene_prompt(page_content: str, recent_narration: str) -> str:
    return f"""Generate an image extremely quickly for a Dungeons and Dragons game. Speed is more important than quality or accuracy.
The style is a very simple, fast digital sketch that looks like a page from an old book.
Do not include any characters, UI elements, or text on the image.

The main subject of the image is the most recent event: "{recent_narration}"

Use the following story text only as context for the location and mood; depict the recent event:
---
{page_content}
---"""


class SceneryPainter:
    def __init__(self, gemini: GeminiClient):
        self.gemini = gemini

    async def paint(self, page_content: str, recent_narration: str) -> bytes:
        return await self.gemini.generate_image(
            build_scene_prompt(page_content, recent_narration),
            aspect_ratio="16:9",
            mime_type="image/jpeg",
            failure_message=SCENE_FAILURE,
        )
