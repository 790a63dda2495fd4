"""
Smoke tests for the generative collaborators in agents/.

Tests use the canned MockGeminiClient; no live Gemini connection needed.
"""

import asyncio
import json

import pytest

from agents.cartographer import MAP_FAILURE, CartographerAgent, build_map_prompt
from agents.character_forger import (
    NPC_SHEET_FAILURE,
    PLAYER_SHEET_FAILURE,
    CharacterForger,
    build_npc_prompt,
    build_player_prompt,
)
from agents.portraitist import Portraitist, build_avatar_prompt
from agents.scenery_painter import build_scene_prompt
from agents.tools.gemini_errors import GenerationCallError, GenerationParseError
from models.characters import Character


class TestCharacterForger:

    def test_sheet_from_backstory(self, make_gemini, sample_sheet):
        gemini, mock = make_gemini([sample_sheet])
        character = asyncio.run(CharacterForger(gemini).from_backstory("A scholar elf."))
        assert character.name == "Elara"
        assert character.char_class == "Wizard"
        assert "A scholar elf." in mock.calls[0]["contents"]

    def test_refinement_sends_previous_sheet(self, make_gemini, sample_sheet):
        previous = Character.model_validate(sample_sheet)
        revised = dict(sample_sheet, **{"class": "Sorcerer"})
        gemini, mock = make_gemini([revised])

        character = asyncio.run(
            CharacterForger(gemini).from_backstory("A scholar elf.", "Make her a sorcerer", previous)
        )
        assert character.char_class == "Sorcerer"
        prompt = mock.calls[0]["contents"]
        assert "Make her a sorcerer" in prompt
        assert json.dumps(previous.to_store()) in prompt

    def test_invalid_sheet_is_a_parse_failure(self, make_gemini):
        gemini, _ = make_gemini([{"race": "Elf"}])
        with pytest.raises(GenerationParseError) as info:
            asyncio.run(CharacterForger(gemini).from_backstory("A scholar elf."))
        assert str(info.value) == PLAYER_SHEET_FAILURE

    def test_npc_sheet(self, make_gemini):
        gemini, mock = make_gemini([{"name": "Grizelda", "race": "Hag", "level": 6}])
        character = asyncio.run(CharacterForger(gemini).from_description("A swamp hag."))
        assert character.level == 6
        assert "A swamp hag." in mock.calls[0]["contents"]

    def test_npc_failure_message(self, make_gemini):
        gemini, _ = make_gemini([RuntimeError("quota")])
        with pytest.raises(GenerationCallError) as info:
            asyncio.run(CharacterForger(gemini).from_description("A swamp hag."))
        assert str(info.value) == NPC_SHEET_FAILURE


class TestPrompts:

    def test_player_prompt_without_refinement(self):
        prompt = build_player_prompt("Raised by wolves.")
        assert "Raised by wolves." in prompt
        assert "Refinement" not in prompt

    def test_refinement_needs_previous_sheet(self):
        assert "Refinement" not in build_player_prompt("x", refinement="taller")
        assert "taller" in build_player_prompt("x", "taller", '{"name": "X"}')

    def test_npc_prompt(self):
        assert "A swamp hag." in build_npc_prompt("A swamp hag.")

    def test_avatar_prompt(self, sample_sheet):
        character = Character.model_validate(sample_sheet)
        prompt = build_avatar_prompt(character)
        assert "Elara, a level 1 Elf Wizard" in prompt
        assert "Curious, Proud" in prompt
        assert "Refinement" not in prompt
        assert "Add a staff" in build_avatar_prompt(character, "Add a staff")

    def test_map_prompt(self):
        assert 'The scene described is: "A flooded crypt".' in build_map_prompt("  A flooded crypt ")

    def test_scene_prompt(self):
        prompt = build_scene_prompt("The party rests.", "A wolf howls.")
        assert '"A wolf howls."' in prompt
        assert "The party rests." in prompt


class TestImageAgents:

    def test_portrait_is_square_png(self, make_gemini, png_bytes, sample_sheet):
        gemini, mock = make_gemini(images=[png_bytes])
        image = asyncio.run(Portraitist(gemini).paint(Character.model_validate(sample_sheet)))
        assert image == png_bytes
        assert mock.calls[0]["config"].aspect_ratio == "1:1"
        assert mock.calls[0]["config"].output_mime_type == "image/png"

    def test_map_is_wide_jpeg(self, make_gemini, jpeg_bytes):
        gemini, mock = make_gemini(images=[jpeg_bytes])
        assert asyncio.run(CartographerAgent(gemini).draw("A flooded crypt")) == jpeg_bytes
        assert mock.calls[0]["config"].aspect_ratio == "16:9"
        assert mock.calls[0]["config"].output_mime_type == "image/jpeg"

    def test_map_failure_message(self, make_gemini):
        gemini, _ = make_gemini(images=[RuntimeError("quota")])
        with pytest.raises(GenerationCallError) as info:
            asyncio.run(CartographerAgent(gemini).draw("A flooded crypt"))
        assert str(info.value) == MAP_FAILURE
