from __future__ import annotations

import allure
import pytest

from radial.tracker.similarity import find_similar_id, levenshtein_distance

pytestmark = [
    allure.epic("Tracker Core"),
    allure.feature("Did-you-mean Suggestions"),
]


@pytest.mark.parametrize(
    ("left", "right", "expected"),
    [
        ("", "", 0),
        ("abc", "", 3),
        ("", "abc", 3),
        ("kitten", "sitting", 3),
        ("aB3xY9qZ", "aB3xY9qZ", 0),
        ("aB3xY9qZ", "aB3xY9qW", 1),
        ("aB3xY9qZ", "B3xY9qZ", 1),
    ],
)
def test_levenshtein_distance(left: str, right: str, expected: int) -> None:
    assert levenshtein_distance(left, right) == expected
    assert levenshtein_distance(right, left) == expected


def test_matcher_prefers_the_distance_one_candidate() -> None:
    typo = "aB3xY9qW"
    near = "aB3xY9qZ"
    far = "aB3mnopq"
    assert levenshtein_distance(typo, near) == 1
    assert levenshtein_distance(typo, far) == 5

    assert find_similar_id(typo, [far, near]) == near


def test_matcher_returns_none_when_only_distant_candidates_exist() -> None:
    assert find_similar_id("aB3xY9qW", ["aB3mnopq"]) is None


def test_matcher_accepts_distance_two_and_rejects_three() -> None:
    assert find_similar_id("abcdefgh", ["abcdefXY"]) == "abcdefXY"
    assert find_similar_id("abcdefgh", ["abcdeXYZ"]) is None


def test_matcher_with_no_candidates() -> None:
    assert find_similar_id("abcdefgh", []) is None
