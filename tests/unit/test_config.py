"""Unit tests for engine settings and component wiring."""

import pytest

from challenge_engine.challenges.service import ReviewPolicy
from challenge_engine.config import EngineSettings
from challenge_engine.dependencies import build_container
from challenge_engine.infrastructure.database.session import normalize_database_url
from challenge_engine.repositories.memory import InMemoryChallengeStore
from challenge_engine.shared.clients.ledger_client import HttpRewardLedger, LoggingRewardLedger
from challenge_engine.shared.clients.link_resolver import HttpLinkResolver, NullLinkResolver
from challenge_engine.shared.schemas.base import ChallengeType


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings()
        assert settings.activate_interval_seconds == 3600
        assert settings.materialize_interval_seconds == 7 * 24 * 3600
        assert settings.credit_redelivery_interval_seconds == 900
        assert settings.review_required == frozenset(
            {ChallengeType.COMPREHENSIVE, ChallengeType.INDUSTRY}
        )

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CHALLENGE_ENGINE_REVIEW_REQUIRED_TYPES", " Skill , quick,")
        monkeypatch.setenv("CHALLENGE_ENGINE_RECOMMENDATION_LIMIT", "3")

        settings = EngineSettings()

        assert settings.review_required == frozenset({ChallengeType.SKILL, ChallengeType.QUICK})
        assert settings.recommendation_limit == 3

    def test_unknown_review_type(self):
        settings = EngineSettings(review_required_types="skill,poetry")
        with pytest.raises(ValueError):
            settings.review_required

    def test_review_policy(self):
        policy = ReviewPolicy.from_settings(EngineSettings(review_required_types="industry"))
        assert policy.requires_review(ChallengeType.INDUSTRY)
        assert not policy.requires_review(ChallengeType.COMPREHENSIVE)


class TestDatabaseUrl:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("postgres://u:p@db/x", "postgresql+asyncpg://u:p@db/x"),
            ("postgresql://u:p@db/x", "postgresql+asyncpg://u:p@db/x"),
            ("postgresql+asyncpg://u:p@db/x", "postgresql+asyncpg://u:p@db/x"),
        ],
    )
    def test_normalize(self, url, expected):
        assert normalize_database_url(url) == expected


class TestBuildContainer:
    def test_in_process_collaborators_by_default(self):
        container = build_container(EngineSettings(), store=InMemoryChallengeStore())
        assert isinstance(container.ledger, LoggingRewardLedger)
        assert isinstance(container.link_resolver, NullLinkResolver)
        assert not container.uses_database

    def test_http_collaborators_when_configured(self):
        settings = EngineSettings(
            ledger_base_url="http://ledger",
            link_resolver_base_url="http://unfurl",
        )
        container = build_container(settings, store=InMemoryChallengeStore())
        assert isinstance(container.ledger, HttpRewardLedger)
        assert isinstance(container.link_resolver, HttpLinkResolver)

    def test_services_share_the_store(self):
        store = InMemoryChallengeStore()
        container = build_container(EngineSettings(), store=store)
        assert container.challenges.store is store
        assert container.recommendations.store is store
        assert container.jobs.store is store
