"""Closest-id lookup for "did you mean" hints."""

from __future__ import annotations

from collections.abc import Iterable

MAX_SUGGESTION_DISTANCE = 2


def levenshtein_distance(left: str, right: str) -> int:
    """Edit distance with unit insert/delete/substitute costs."""

    if not left:
        return len(right)
    if not right:
        return len(left)

    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                ),
            )
        previous = current
    return previous[-1]


def find_similar_id(
    target: str,
    candidates: Iterable[str],
    *,
    max_distance: int = MAX_SUGGESTION_DISTANCE,
) -> str | None:
    """Return the closest candidate within ``max_distance``, first one wins on ties."""

    best: tuple[str, int] | None = None
    for candidate in candidates:
        distance = levenshtein_distance(target, candidate)
        if distance > max_distance:
            continue
        if best is None or distance < best[1]:
            best = (candidate, distance)
    return best[0] if best is not None else None
