# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest

from loreweave.lorebook.storage import LorebookStore


@pytest.fixture()
def store(tmp_path: Path) -> LorebookStore:
    return LorebookStore(tmp_path / "store")


@pytest.fixture()
def sillytavern_data() -> dict:
    """Native world info: one plain entry, one AND_ANY entry, one constant entry."""
    return {
        "entries": {
            "0": {
                "uid": 0,
                "key": ["dragon"],
                "keysecondary": [],
                "comment": "Dragons",
                "content": "Dragons breathe fire.",
                "selective": False,
                "order": 100,
            },
            "1": {
                "uid": 1,
                "key": ["castle"],
                "keysecondary": ["king"],
                "comment": "Castle",
                "content": "The castle belongs to the king.",
                "selective": True,
                "selectiveLogic": 0,
                "order": 50,
            },
            "2": {
                "uid": 2,
                "key": [],
                "comment": "Magic",
                "content": "Magic exists.",
                "constant": True,
                "order": 200,
            },
        },
        "scan_depth": 4,
        "token_budget": 500,
    }


@pytest.fixture()
def novelai_data() -> dict:
    return {
        "lorebookVersion": 5,
        "entries": [
            {
                "text": "Elves live for a thousand years.",
                "keys": ["elf", "elves"],
                "displayName": "Elves",
                "enabled": True,
                "contextConfig": {"budgetPriority": 300},
            },
            {
                "text": "Hidden lore.",
                "keys": ["secret"],
                "enabled": False,
                "forceActivation": False,
            },
        ],
    }


@pytest.fixture()
def agnai_data() -> dict:
    return {
        "kind": "memory",
        "name": "Bestiary",
        "entries": [
            {
                "name": "Orcs",
                "entry": "Orcs are strong.",
                "keywords": ["orc"],
                "priority": 10,
                "weight": 40,
                "enabled": True,
            },
        ],
    }


@pytest.fixture()
def risu_data() -> dict:
    return {
        "type": "risu",
        "data": [
            {
                "key": "sword, blade, ",
                "secondkey": "",
                "comment": "Sword",
                "content": "A sharp sword.",
                "alwaysActive": False,
                "selective": False,
                "insertorder": 70,
                "activationPercent": 100,
            },
            {
                "key": "ring",
                "secondkey": "gold,silver",
                "comment": "Ring",
                "content": "One ring.",
                "alwaysActive": False,
                "selective": True,
                "insertorder": 90,
            },
        ],
    }
