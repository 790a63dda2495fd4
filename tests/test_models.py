"""
Tests for models/ — wire-format aliases, defaults and normalization.
"""

import pytest
from pydantic import ValidationError

from models import (
    ActivePlayer,
    Bar,
    Character,
    DiceRoll,
    GameState,
    MapData,
    NPC,
    PendingPlayer,
    coerce_story_pages,
    parse_assistant_updates,
)


class TestCharacter:

    def test_reads_wire_names(self, sample_sheet):
        character = Character.model_validate(sample_sheet)
        assert character.char_class == "Wizard"
        assert character.personality_traits == ["Curious", "Proud"]
        assert character.experience.next_level == 300
        assert character.resource.name == "Mana"

    def test_dumps_wire_names(self, sample_sheet):
        data = Character.model_validate(sample_sheet).to_store()
        assert data["class"] == "Wizard"
        assert data["personalityTraits"] == ["Curious", "Proud"]
        assert data["experience"] == {"current": 0, "nextLevel": 300}
        assert "avatarUrl" not in data

    def test_minimal_sheet_gets_defaults(self):
        character = Character(name="Ghost")
        assert character.level == 1
        assert character.stamina.current == 100
        assert character.resource is None
        assert character.inventory == []

    def test_name_is_required(self):
        with pytest.raises(ValidationError):
            Character.model_validate({"race": "Elf"})

    def test_bar_over_max_is_allowed(self):
        bar = Bar(current=12, max=10)
        assert bar.over_max is True


class TestPlayers:

    def test_pending_dump_omits_missing_backstory(self):
        assert PendingPlayer(ip="1.2.3.4-5").to_store() == {"ip": "1.2.3.4-5", "accepted": False}

    def test_active_player_round_trips_store_shape(self, sample_sheet):
        player = ActivePlayer.model_validate({"id": "1.2.3.4-5", "character_data": sample_sheet})
        assert player.name == "Elara"
        assert player.to_store()["id"] == "1.2.3.4-5"
        assert player.to_store()["character_data"]["class"] == "Wizard"

    def test_npc_id_is_not_stored(self, sample_sheet):
        npc = NPC(id="-Nabc", character_data=Character.model_validate(sample_sheet))
        assert "id" not in npc.to_store()


class TestDiceRoll:

    def test_aliases(self):
        roll = DiceRoll.model_validate({"isRolling": True, "rollerName": "Dungeon Master", "timestamp": 5})
        assert roll.is_rolling is True
        assert roll.result is None
        assert roll.permission_holder is None

    @pytest.mark.parametrize("result", [0, 21])
    def test_result_out_of_range(self, result):
        with pytest.raises(ValidationError):
            DiceRoll(result=result)


class TestStoryPages:

    def test_list_with_holes(self):
        pages = coerce_story_pages([None, {"text": "One"}, None, {"text": "Three"}])
        assert {n: p.text for n, p in pages.items()} == {1: "One", 3: "Three"}

    def test_dict_with_string_keys(self):
        pages = coerce_story_pages({"1": {"text": "One"}, "2": {"text": ""}, "notes": {"text": "x"}})
        assert sorted(pages) == [1, 2]

    def test_empty(self):
        assert coerce_story_pages(None) == {}

    def test_game_state_normalizes_pages(self):
        state = GameState.model_validate({"activeMapId": "m1", "story_pages": [None, {"text": "Hi"}]})
        assert state.active_map_id == "m1"
        assert state.story_pages[1].text == "Hi"


class TestMapData:

    def test_from_store(self):
        map_data = MapData.from_store("m1", {
            "name": "Crypt",
            "imageUrl": "memory://DND/maps/1-crypt.png",
            "storagePath": "DND/maps/1-crypt.png",
            "imageWidth": 1000,
            "imageHeight": 500,
            "tokenSize": 1.5,
            "tokens": {"p1": {"x": 10, "y": 20, "visible": False}, "gone": None},
        })
        assert map_data.id == "m1"
        assert map_data.image_width == 1000
        assert map_data.token_size == 1.5
        assert list(map_data.tokens) == ["p1"]
        assert map_data.tokens["p1"].visible is False

    def test_to_store_uses_aliases_without_id(self):
        data = MapData(id="m1", name="Crypt", imageWidth=10, imageHeight=5).to_store()
        assert "id" not in data
        assert data["imageWidth"] == 10
        assert data["tokenSize"] == 1.0


class TestAssistantUpdates:

    def test_unnamed_entries_dropped(self):
        updates = parse_assistant_updates([
            {"playerName": "Elara", "health": {"current": 2}},
            {"health": {"current": 1}},
            "nonsense",
        ])
        assert [u.player_name for u in updates] == ["Elara"]

    def test_field_updates_exclude_control_keys(self):
        update = parse_assistant_updates([
            {"playerName": "Elara", "avatarRefinement": "add a hat", "level": 2},
        ])[0]
        assert update.avatar_refinement == "add a hat"
        assert update.field_updates() == {"level": 2}

    def test_non_list_is_empty(self):
        assert parse_assistant_updates({"playerName": "Elara"}) == []
