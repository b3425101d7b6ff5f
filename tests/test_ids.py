from __future__ import annotations

import allure

from radial.tracker.ids import ID_ALPHABET, ID_LENGTH, generate_id

pytestmark = [
    allure.epic("Tracker Core"),
    allure.feature("Identifiers"),
]


def test_generated_ids_are_short_alphanumeric_tokens() -> None:
    for _ in range(200):
        entity_id = generate_id()
        assert len(entity_id) == ID_LENGTH == 8
        assert set(entity_id) <= set(ID_ALPHABET)
        assert not entity_id.startswith("-")


def test_alphabet_has_62_symbols() -> None:
    assert len(ID_ALPHABET) == 62
    assert len(set(ID_ALPHABET)) == 62


def test_generated_ids_do_not_repeat_in_practice() -> None:
    ids = {generate_id() for _ in range(5_000)}
    assert len(ids) == 5_000
