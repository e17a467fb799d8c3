from __future__ import annotations

import pytest

from app.models.listener import KeywordCategory, KeywordDefinition
from app.services.listener.errors import (
    KeywordConflictError,
    ListenerPersistenceError,
    NotFoundError,
    ValidationError,
)
from app.services.listener.keyword_repository import InMemoryKeywordRepository
from app.services.listener.keyword_seed import SEED_KEYWORDS
from app.services.listener.keywords import (
    KeywordCatalog,
    best_match_context,
    match_keywords,
    primary_category,
)
from tests.helpers.metrics_stub import StubMetrics

PAIN = KeywordCategory.PAIN_SIGNAL


def _keyword(keyword: str, weight: int = 3, category=PAIN, tags=()) -> KeywordDefinition:
    return KeywordDefinition(
        keyword=keyword, category=category, weight=weight, product_tags=list(tags)
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FlakyRepository(InMemoryKeywordRepository):
    def __init__(self) -> None:
        super().__init__()
        self.fail = False

    def list_keywords(self, **kwargs):
        if self.fail:
            raise ListenerPersistenceError("Failed to list keywords.")
        return super().list_keywords(**kwargs)


def _catalog(repository=None, clock=None) -> KeywordCatalog:
    return KeywordCatalog(
        repository or InMemoryKeywordRepository(),
        clock=clock or FakeClock(),
        metrics=StubMetrics(),
    )


def test_match_respects_word_boundaries():
    captcha = _keyword("captcha", weight=5)

    result = match_keywords("We need a CAPTCHA replacement for bot protection", [captcha])
    assert len(result.matches) == 1
    assert result.matches[0].matched_text == "CAPTCHA"
    assert result.total_score == 5

    assert match_keywords("scaptcha", [captcha]).matches == []
    assert match_keywords("captchas everywhere", [captcha]).matches == []


def test_match_accepts_punctuation_boundaries():
    result = match_keywords("(bot), bot. 'bot'", [_keyword("bot")])
    assert len(result.matches) == 3


def test_repeated_keyword_counts_once_in_score():
    result = match_keywords(
        "bots bots and more bots; scraper too",
        [_keyword("bots", 3, tags=["captcha_replacement"]), _keyword("scraper", 4, tags=["voice_captcha", "captcha_replacement"])],
    )

    assert len(result.matches) == 4
    assert result.total_score == 7
    assert result.keywords == ["bots", "scraper"]
    assert result.product_tags == ["captcha_replacement", "voice_captcha"]
    assert result.categories == [PAIN]


def test_empty_text_has_no_matches():
    assert match_keywords("", [_keyword("bot")]).has_matches is False
    assert match_keywords(None, [_keyword("bot")]).total_score == 0


def test_best_match_context_centers_on_heaviest_keyword():
    text = "intro " * 50 + "we saw a bot attack last night " + "outro " * 50
    result = match_keywords(text, [_keyword("intro", 1), _keyword("bot attack", 5)])

    context = best_match_context(text, result.matches, chars=20)

    assert "bot attack" in context
    assert context.startswith("...") and context.endswith("...")
    assert best_match_context(text, []) == ""


def test_primary_category_sums_weights():
    result = match_keywords(
        "coppa fine and bot traffic and scalper",
        [
            _keyword("coppa", 5, category=KeywordCategory.REGULATORY),
            _keyword("bot traffic", 4),
            _keyword("scalper", 4),
        ],
    )
    assert primary_category(result.matches) is PAIN
    assert primary_category([]) is None


def test_catalog_caches_until_ttl_or_write():
    clock = FakeClock()
    catalog = _catalog(clock=clock)
    catalog.add_keyword("bot", "pain_signal", 3)

    assert catalog.match_text("a bot").total_score == 3
    catalog.repository.add(_keyword("scraper", 4))
    assert catalog.match_text("a scraper").total_score == 0

    clock.now += 301
    assert catalog.match_text("a scraper").total_score == 4

    catalog.add_keyword("crawler", PAIN, 2)
    assert catalog.match_text("a crawler").total_score == 2


def test_catalog_serves_stale_keywords_when_reload_fails():
    clock = FakeClock()
    repository = FlakyRepository()
    catalog = _catalog(repository, clock)
    catalog.add_keyword("bot", PAIN, 3)
    assert catalog.match_text("bot").total_score == 3

    repository.fail = True
    clock.now += 600
    assert catalog.match_text("bot").total_score == 3

    catalog.invalidate_cache()
    with pytest.raises(ListenerPersistenceError):
        catalog.match_text("bot")


def test_inactive_keywords_do_not_match():
    catalog = _catalog()
    keyword = catalog.add_keyword("ddos", PAIN, 4)
    catalog.toggle_keyword(keyword.id, False)

    assert catalog.match_text("ddos wave").has_matches is False
    assert catalog.get_keyword(keyword.id).is_active is False


def test_add_keyword_validates_input_and_rejects_duplicates():
    catalog = _catalog()
    catalog.add_keyword("Bot Traffic", PAIN, 5, ["captcha_replacement"])

    with pytest.raises(KeywordConflictError):
        catalog.add_keyword("bot traffic", PAIN, 4)
    with pytest.raises(ValidationError):
        catalog.add_keyword("scraper", PAIN, 9)
    with pytest.raises(ValidationError):
        catalog.add_keyword("scraper", "not-a-category", 2)
    with pytest.raises(ValidationError):
        catalog.add_keyword("   ", PAIN, 2)


def test_update_keyword_changes_fields_and_rejects_unknown():
    catalog = _catalog()
    keyword = catalog.add_keyword("sms fraud", PAIN, 3)

    updated = catalog.update_keyword(keyword.id, weight=5, product_tags=["voice_captcha"])
    assert updated.weight == 5
    assert updated.product_tags == ["voice_captcha"]

    with pytest.raises(ValidationError):
        catalog.update_keyword(keyword.id, color="red")
    with pytest.raises(ValidationError):
        catalog.update_keyword(keyword.id, weight=0)


def test_get_and_delete_missing_keyword():
    catalog = _catalog()
    keyword = catalog.add_keyword("bot", PAIN)

    assert catalog.delete_keyword(keyword.id) is True
    assert catalog.delete_keyword(keyword.id) is False
    with pytest.raises(NotFoundError):
        catalog.get_keyword(keyword.id)


def test_bulk_add_and_category_reweight():
    catalog = _catalog()
    added, skipped = catalog.bulk_add(
        [
            ("coppa", KeywordCategory.REGULATORY, 5, ["age_verification"]),
            ("kosa", KeywordCategory.REGULATORY, 4, ["age_verification"]),
            ("coppa", KeywordCategory.REGULATORY, 5, []),
        ]
    )
    assert (added, skipped) == (2, 1)

    assert catalog.update_category_weight("regulatory", 2) == 2
    assert {entry.weight for entry in catalog.list_keywords(category=KeywordCategory.REGULATORY)} == {2}


def test_seeding_is_idempotent_and_stats_reflect_taxonomy():
    catalog = _catalog()

    assert catalog.ensure_seeded() == len(SEED_KEYWORDS)
    assert catalog.ensure_seeded() == 0
    assert catalog.seed_defaults() == (0, len(SEED_KEYWORDS))

    stats = catalog.keyword_stats()
    assert stats["total"] == len(SEED_KEYWORDS) == stats["active"]
    assert set(stats["by_category"]) == {category.value for category in KeywordCategory}
    assert 1 <= stats["avg_weight"] <= 5


def test_seed_taxonomy_matches_scalper_story():
    catalog = _catalog()
    catalog.seed_defaults()

    result = catalog.match_text("Ticketmaster faces new scalper bot lawsuit")

    assert {"bot", "scalper", "scalper bot"} <= set(result.keywords)
    assert "captcha_replacement" in result.product_tags
