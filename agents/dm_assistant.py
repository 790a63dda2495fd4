"""
DMAssistant — turns one free-form DM instruction into per-character
partial updates.

The assistant only proposes. `tools.command_batcher` decides which
proposals land (exact-name matches only) and writes them in one batch.
"""

import json
import logging
from typing import List, Sequence

from agents.tools.gemini_errors import GenerationError
from agents.tools.gemini_tool import GeminiClient
from models.assistant import AssistantUpdate, parse_assistant_updates
from models.players import ActivePlayer, NPC

logger = logging.getLogger('DMAssistant')

COMMAND_FAILURE = "The assistant misunderstood your command. Please be more specific."
EMPTY_ROSTER = "There are no characters on the map to modify."


class EmptyRosterError(GenerationError):
    """No players and no visible NPCs to modify. Raised before any call."""

    def __init__(self, message: str = EMPTY_ROSTER):
        super().__init__(message)


def _partial(description: str, **properties) -> dict:
    return {"type": "OBJECT", "description": description, "properties": properties}


_INT = {"type": "INTEGER"}
_STR = {"type": "STRING"}

DM_ASSISTANT_RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "description": "Update actions to perform on one or more characters.",
    "items": {
        "type": "OBJECT",
        "properties": {
            "playerName": {
                "type": "STRING",
                "description": "Name of the character to update. MUST exactly match one of the provided names.",
            },
            "level": {"type": "INTEGER", "description": "The character's new level."},
            "experience": _partial("New experience. Only the fields being changed.", current=_INT, nextLevel=_INT),
            "health": _partial("New health. Only the fields being changed (e.g. 'current' for damage).", current=_INT, max=_INT),
            "stamina": _partial("New stamina. Only the fields being changed.", current=_INT, max=_INT),
            "resource": _partial("New resource values. Only the fields being changed.", name=_STR, current=_INT, max=_INT),
            "age": {"type": "INTEGER", "description": "The character's new age."},
            "stats": _partial("Only the stats that are changing.", strength=_INT, intelligence=_INT, charisma=_INT),
            "backstory": {"type": "STRING", "description": "The new, complete backstory."},
            "inventory": {
                "type": "ARRAY",
                "description": "The new, complete inventory list.",
                "items": {
                    "type": "OBJECT",
                    "properties": {"name": _STR, "quantity": _INT},
                    "required": ["name", "quantity"],
                },
            },
            "skills": {
                "type": "ARRAY",
                "description": "The new, complete list of skills.",
                "items": {
                    "type": "OBJECT",
                    "properties": {"name": _STR, "description": _STR},
                    "required": ["name", "description"],
                },
            },
            "personalityTraits": {
                "type": "ARRAY",
                "items": _STR,
                "description": "The new, complete list of personality traits.",
            },
            "fears": {"type": "STRING", "description": "The new, complete text of the character's fears."},
            "avatarRefinement": {
                "type": "STRING",
                "description": "If the DM asks to change a character's avatar, a prompt describing the change.",
            },
        },
        "required": ["playerName"],
    },
}


def build_command_prompt(command: str, players: Sequence[ActivePlayer], visible_npcs: Sequence[NPC]) -> str:
    player_context = json.dumps([p.character_data.to_store() for p in players], indent=2)
    npc_context = json.dumps([n.character_data.to_store() for n in visible_npcs], indent=2)
    return f"""You are a Dungeon Master's assistant. Process a command from the DM that modifies character sheets for players and NPCs currently on the map.
The response MUST be a valid JSON ARRAY of update actions matching the provided schema.
One command can carry several actions (one player takes damage, an NPC gets an item).
Handle additive, subtractive and replacement commands for every stat.

**Inventory changes:**
- When adding items, read the character's existing inventory. Update the quantity of an existing item or add a new one.
- When removing items, decrease the quantity. At 0 or less, REMOVE the item from the list entirely.
- The 'inventory' field must be the character's NEW, COMPLETE inventory list.

Current Characters on the Map:
---
**Players:**
{player_context}

**Visible NPCs:**
{npc_context}
---

Dungeon Master's Command:
---
{command}
---

Each object requires a 'playerName' matching a name from the lists above.
Include ONLY the top-level keys for fields being updated.
For nested objects like 'health' or 'stats', include only the sub-keys that change.

Example Command: "Elara takes 10 damage, her stamina drops to 50, and the Goblin Archer is frightened."
Example Response (Elara had 12 health; Goblin Archer is an NPC):
[
  {{ "playerName": "Elara", "health": {{ "current": 2 }}, "stamina": {{ "current": 50 }} }},
  {{ "playerName": "Goblin Archer", "fears": "Is now terrified of Elara." }}
]"""


class DMAssistant:
    """Interprets DM commands against the characters on the map."""

    def __init__(self, gemini: GeminiClient):
        self.gemini = gemini

    async def interpret(
        self,
        command: str,
        players: Sequence[ActivePlayer],
        visible_npcs: Sequence[NPC],
    ) -> List[AssistantUpdate]:
        """Ask for the updates a command implies.

        Raises:
            GenerationDisabledError: no API key.
            EmptyRosterError: nobody to modify.
            GenerationCallError: the call failed or returned malformed JSON.
        """
        self.gemini.require()
        if not players and not visible_npcs:
            raise EmptyRosterError()

        raw = await self.gemini.generate_json(
            build_command_prompt(command, players, visible_npcs),
            DM_ASSISTANT_RESPONSE_SCHEMA,
            COMMAND_FAILURE,
        )
        updates = parse_assistant_updates(raw)
        logger.info(f"Assistant proposed {len(updates)} update(s) for: {command[:80]}")
        return updates
