"""Pluggable per-game scoring rules.

The turn processor treats a rule as a pure function
``(current_score, delta) -> (new_score, leg_won)``. Game-specific arithmetic
(checkout doubles, Halve-It targets, ...) lives with the caller; the default
rule is a plain countdown where overshooting zero leaves the score unchanged.
"""

from collections.abc import Callable
from dataclasses import dataclass

ScoringRule = Callable[[int, int], tuple[int, bool]]


def countdown(current_score: int, delta: int) -> tuple[int, bool]:
    remaining = current_score - delta
    if remaining < 0:
        return current_score, False
    return remaining, remaining == 0


@dataclass(frozen=True)
class GameRules:
    starting_score: int
    rule: ScoringRule


_registry: dict[str, GameRules] = {
    "301": GameRules(starting_score=301, rule=countdown),
    "501": GameRules(starting_score=501, rule=countdown),
}


def register_game(game_type: str, starting_score: int, rule: ScoringRule) -> None:
    _registry[game_type] = GameRules(starting_score=starting_score, rule=rule)


def is_supported(game_type: str) -> bool:
    return game_type in _registry


def rules_for(game_type: str) -> GameRules:
    try:
        return _registry[game_type]
    except KeyError:
        raise ValueError(f"Unsupported game type: {game_type}") from None
