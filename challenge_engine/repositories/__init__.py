"""Store layer: abstract interface, in-memory and SQL implementations."""

from challenge_engine.repositories.base import ChallengeStore
from challenge_engine.repositories.exceptions import (
    ConcurrencyError,
    DuplicateEntityError,
    EntityNotFoundError,
    RepositoryError,
    StoreUnavailable,
)
from challenge_engine.repositories.memory import InMemoryChallengeStore

__all__ = [
    "ChallengeStore",
    "ConcurrencyError",
    "DuplicateEntityError",
    "EntityNotFoundError",
    "InMemoryChallengeStore",
    "RepositoryError",
    "StoreUnavailable",
]
