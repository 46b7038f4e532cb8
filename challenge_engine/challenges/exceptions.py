"""Challenge lifecycle exceptions.

Precondition violations and illegal transitions are surfaced to the caller
and never retried automatically.
"""

from typing import Any

from challenge_engine.repositories.exceptions import EntityNotFoundError


class ChallengeEngineError(Exception):
    """Base exception for lifecycle errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class InvalidTransition(ChallengeEngineError):
    """Raised when an illegal state change is attempted."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current: str,
        target: str,
        allowed: list[str] | None = None,
        reason: str | None = None,
    ) -> None:
        message = (
            f"Cannot transition {entity_type} '{entity_id}' "
            f"from '{current}' to '{target}'"
        )
        if reason:
            message = f"{message}: {reason}"
        elif allowed is not None:
            message = f"{message}. Allowed from '{current}': {allowed}"
        super().__init__(
            message,
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current": current,
                "target": target,
                "allowed": allowed or [],
            },
        )
        self.entity_type = entity_type
        self.current = current
        self.target = target


class AlreadyJoined(ChallengeEngineError):
    """Raised when a user joins a challenge they already have a record for."""

    def __init__(self, user_id: str, challenge_id: str) -> None:
        super().__init__(
            f"User '{user_id}' already joined challenge '{challenge_id}'",
            {"user_id": user_id, "challenge_id": challenge_id},
        )


class NotParticipating(ChallengeEngineError):
    """Raised when a user acts on a challenge they never joined."""

    def __init__(self, user_id: str, challenge_id: str) -> None:
        super().__init__(
            f"User '{user_id}' is not participating in challenge '{challenge_id}'",
            {"user_id": user_id, "challenge_id": challenge_id},
        )


class ChallengeNotJoinable(ChallengeEngineError):
    """Raised when the challenge is not in ``active`` status."""

    def __init__(self, challenge_id: str, status: str) -> None:
        super().__init__(
            f"Challenge '{challenge_id}' is not active (current: {status})",
            {"challenge_id": challenge_id, "status": status},
        )
        self.status = status


class ChallengeFull(ChallengeEngineError):
    """Raised when a challenge has reached ``max_participants``."""

    def __init__(self, challenge_id: str, max_participants: int) -> None:
        super().__init__(
            f"Challenge '{challenge_id}' is full ({max_participants} participants)",
            {"challenge_id": challenge_id, "max_participants": max_participants},
        )


class ChallengeNotFound(EntityNotFoundError):
    """Raised when a challenge id does not resolve."""

    def __init__(self, challenge_id: str) -> None:
        super().__init__("Challenge", challenge_id)


__all__ = [
    "AlreadyJoined",
    "ChallengeEngineError",
    "ChallengeFull",
    "ChallengeNotFound",
    "ChallengeNotJoinable",
    "InvalidTransition",
    "NotParticipating",
]
