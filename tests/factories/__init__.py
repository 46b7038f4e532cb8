"""Test data factories for the Challenge Engine."""

from tests.factories.challenge_factory import (
    T0,
    ChallengeFactory,
    TemplateFactory,
    UserChallengeFactory,
)

__all__ = [
    "T0",
    "ChallengeFactory",
    "TemplateFactory",
    "UserChallengeFactory",
]
