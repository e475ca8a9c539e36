"""Multi-term proximity matching over term positions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Sequence

DEFAULT_PROXIMITY_THRESHOLD = 10


@dataclass(slots=True)
class ProximityResult:
    is_proximity: bool
    min_distances: List[int] = field(default_factory=list)


def min_distance(first: Sequence[int], second: Sequence[int]) -> int:
    """Smallest absolute gap between two sorted position lists.

    Two-pointer scan, linear in the combined list length.
    """
    if not first or not second:
        raise ValueError("position lists must not be empty")
    i = j = 0
    best = abs(first[0] - second[0])
    while i < len(first) and j < len(second):
        gap = first[i] - second[j]
        if abs(gap) < best:
            best = abs(gap)
            if best == 0:
                break
        if gap < 0:
            i += 1
        else:
            j += 1
    return best


@dataclass(slots=True)
class _ChainState:
    remaining: List[str]
    stack: List[str]
    cursor: int = 0
    distances: List[int] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return not self.remaining or not self.stack


def terms_proximity(
    term_positions: Mapping[str, Sequence[int]],
    query_terms: Sequence[str],
    threshold: int = DEFAULT_PROXIMITY_THRESHOLD,
) -> ProximityResult:
    """Check whether all query terms connect into one chain of close terms.

    Each link in the chain joins two terms whose nearest occurrences are at most
    ``threshold`` positions apart. Terms missing from ``term_positions`` are
    ignored. On failure ``min_distances`` holds the links found before the
    search gave up; it is diagnostic output only.
    """
    positions = {
        term: sorted(term_positions[term])
        for term in dict.fromkeys(query_terms)
        if term_positions.get(term)
    }
    terms = list(positions)
    if not terms:
        return ProximityResult(False, [])
    if len(terms) == 1:
        return ProximityResult(True, [])

    state = _ChainState(remaining=terms[1:], stack=[terms[0]])
    while not state.done:
        top = state.stack[-1]
        candidate = state.remaining[state.cursor]
        distance = min_distance(positions[top], positions[candidate])

        if distance <= threshold:
            state.stack.append(candidate)
            del state.remaining[state.cursor]
            state.distances.append(distance)
            state.cursor = 0
        elif state.cursor < len(state.remaining) - 1:
            state.cursor += 1
        else:
            # Backtrack; the popped term stays linked but is no longer an anchor.
            state.stack.pop()
            state.cursor = 0

    return ProximityResult(not state.remaining, state.distances)
