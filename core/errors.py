"""Error taxonomy for the remote match engine.

Every error is raised synchronously by the operation that attempted the
mutation. Nothing is committed when one of these propagates; the API layer
turns them into JSON responses with the class's HTTP status.
"""

from typing import Any


class MatchError(Exception):
    """Base class for all engine errors."""

    code = "match_error"
    status_code = 400
    default_message = "Match operation failed"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.details}


class AlreadyLocked(MatchError):
    """User already participates in a live remote match."""

    code = "already_locked"
    status_code = 409
    default_message = "You already have an active match. Finish or cancel it first."


class Expired(MatchError):
    """Action attempted after its deadline."""

    code = "expired"
    status_code = 410
    default_message = "This challenge has expired"


class StaleTurn(MatchError):
    """Optimistic-concurrency conflict on turn submission."""

    code = "stale_turn"
    status_code = 409
    default_message = "Turn index is stale, refetch the match"


class NotYourTurn(MatchError):
    code = "not_your_turn"
    status_code = 403
    default_message = "Not your turn"


class NotParticipant(MatchError):
    code = "not_participant"
    status_code = 403
    default_message = "User is not a participant of this match"


class InvalidTransition(MatchError):
    """Action not permitted for the match's current status."""

    code = "invalid_transition"
    status_code = 409
    default_message = "Action not allowed in the current match status"


class MatchNotFound(MatchError):
    code = "match_not_found"
    status_code = 404
    default_message = "Match not found"


class InvalidChallenge(MatchError):
    code = "invalid_challenge"
    status_code = 400
    default_message = "Invalid challenge"


class ChallengeBlocked(MatchError):
    code = "challenge_blocked"
    status_code = 403
    default_message = "Cannot challenge this user"


class ChallengeExists(MatchError):
    code = "challenge_exists"
    status_code = 409
    default_message = "An open challenge already exists between these users"


class InvalidTurn(MatchError):
    """Visit that no three darts can produce."""

    code = "invalid_turn"
    status_code = 400
    default_message = "Invalid visit"
