"""
CharacterForger — turns a player's backstory (or a DM's NPC description)
into a complete, validated character sheet.

The model is constrained by CHARACTER_SHEET_SCHEMA; the reply still goes
through `Character.model_validate` so a schema slip surfaces as a parse
failure instead of a half-written record.
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError

from agents.tools.gemini_errors import GenerationParseError
from agents.tools.gemini_tool import GeminiClient
from models.characters import Character

logger = logging.getLogger('CharacterForger')


def _bar(description: str) -> dict:
    return {
        "type": "OBJECT",
        "description": description,
        "properties": {"current": {"type": "INTEGER"}, "max": {"type": "INTEGER"}},
        "required": ["current", "max"],
    }


CHARACTER_SHEET_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "name": {"type": "STRING", "description": "The character's first name."},
        "race": {"type": "STRING", "description": "The character's race (e.g., Human, Elf, Dwarf)."},
        "class": {"type": "STRING", "description": "The character's class (e.g., Fighter, Wizard, Rogue)."},
        "age": {"type": "INTEGER", "description": "The character's age in years."},
        "level": {"type": "INTEGER", "description": "The character's level. This should start at 1."},
        "experience": {
            "type": "OBJECT",
            "description": "Experience points. 0 out of 300 for a new level 1 character.",
            "properties": {"current": {"type": "INTEGER"}, "nextLevel": {"type": "INTEGER"}},
            "required": ["current", "nextLevel"],
        },
        "health": _bar("Health points. Max is based on class (Wizard: 10, Fighter: 15). Current equals max."),
        "stamina": _bar("Stamina from 0 to 100. Starts at 100 of 100."),
        "resource": {
            "type": "OBJECT",
            "description": "Optional resource pool such as Mana. Not every class has one.",
            "properties": {
                "name": {"type": "STRING"},
                "current": {"type": "INTEGER"},
                "max": {"type": "INTEGER"},
            },
            "required": ["name", "current", "max"],
        },
        "stats": {
            "type": "OBJECT",
            "properties": {
                "strength": {"type": "INTEGER", "description": "3-20, physical power."},
                "intelligence": {"type": "INTEGER", "description": "3-20, reasoning and memory."},
                "charisma": {"type": "INTEGER", "description": "3-20, force of personality."},
            },
            "required": ["strength", "intelligence", "charisma"],
        },
        "skills": {
            "type": "ARRAY",
            "description": "2-3 key skills with a mechanical description of effect, duration or cost.",
            "items": {
                "type": "OBJECT",
                "properties": {"name": {"type": "STRING"}, "description": {"type": "STRING"}},
                "required": ["name", "description"],
            },
        },
        "personalityTraits": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "2-4 single-word personality traits.",
        },
        "fears": {"type": "STRING", "description": "A short sentence describing the greatest fear."},
        "backstory": {"type": "STRING", "description": "One-paragraph history and motivation, rewritten from the input."},
        "inventory": {
            "type": "ARRAY",
            "description": "1-3 starting items with quantities.",
            "items": {
                "type": "OBJECT",
                "properties": {"name": {"type": "STRING"}, "quantity": {"type": "INTEGER"}},
                "required": ["name", "quantity"],
            },
        },
    },
    "required": [
        "name", "race", "class", "age", "level", "experience", "health", "stamina",
        "stats", "skills", "personalityTraits", "fears", "backstory", "inventory",
    ],
}

PLAYER_SHEET_FAILURE = "The AI failed to shape the hero's destiny. Please try again."
NPC_SHEET_FAILURE = "The AI failed to shape the NPC's destiny. Please try again."


def build_player_prompt(backstory: str, refinement: Optional[str] = None, existing_json: Optional[str] = None) -> str:
    prompt = f"""You are a creative assistant for a Dungeons & Dragons game. Generate a detailed character sheet from a player's submitted backstory.
The response MUST be a valid JSON object matching the provided schema.
Generate balanced stats between 8 and 18.
The character starts at level 1 with 0 experience points.
Infer every detail from the backstory: name, race, class, personality, fears and skills.
- Health: a reasonable starting max based on class (Wizards are frail, Fighters are tough). Current equals max.
- Stamina: starts at 100/100.
- Resource: include it only if the class uses one (Mana, Ki, ...).
- Skills: each with a concrete mechanical description.
- Inventory: 1-3 appropriate starting items with quantities.

Player's backstory:
---
{backstory}
---
"""
    if refinement and existing_json:
        prompt += f"""The Dungeon Master reviewed the previously generated character and left refinement notes.
Update the character sheet accordingly.

Previously Generated Character (JSON):
{existing_json}

DM's Refinement Notes:
{refinement}

Generate the new, complete character sheet as a single JSON object."""
    else:
        prompt += "Generate the character sheet as a JSON object."
    return prompt


def build_npc_prompt(description: str) -> str:
    return f"""You are a creative assistant for a Dungeons & Dragons game. Generate a character sheet for a Non-Player Character (NPC) from a description.
The response MUST be a valid JSON object matching the provided schema.
Stats fit the NPC's role (a shopkeeper is weak, a guard is strong). The NPC can be any level.
Fields such as skills or resource may be sparse or empty when they do not apply.

NPC Description:
---
{description}
---
Generate the character sheet as a JSON object."""


def _validate(raw, failure_message: str) -> Character:
    try:
        return Character.model_validate(raw)
    except ValidationError as e:
        logger.error(f"Generated sheet failed validation: {e}")
        raise GenerationParseError(failure_message) from e


class CharacterForger:
    """Generates Character sheets from free text."""

    def __init__(self, gemini: GeminiClient):
        self.gemini = gemini

    async def from_backstory(
        self,
        backstory: str,
        refinement: Optional[str] = None,
        existing: Optional[Character] = None,
    ) -> Character:
        """Create (or, with refinement notes, revise) a player's sheet."""
        existing_json = json.dumps(existing.to_store()) if existing else None
        prompt = build_player_prompt(backstory, refinement, existing_json)
        raw = await self.gemini.generate_json(prompt, CHARACTER_SHEET_SCHEMA, PLAYER_SHEET_FAILURE)
        character = _validate(raw, PLAYER_SHEET_FAILURE)
        logger.info(f"Forged character '{character.name}' ({character.race} {character.char_class})")
        return character

    async def from_description(self, description: str) -> Character:
        """Create an NPC sheet."""
        raw = await self.gemini.generate_json(build_npc_prompt(description), CHARACTER_SHEET_SCHEMA, NPC_SHEET_FAILURE)
        return _validate(raw, NPC_SHEET_FAILURE)
