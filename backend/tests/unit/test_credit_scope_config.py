import pytest

from creditgate.credit.domain.errors import MalformedScopeConfig
from creditgate.credit.domain.scope_config import (
    FileScopeConfigSource,
    ScopeConfig,
    ScopeConfigProvider,
    parse_scope_config_yaml,
    validate_scope_config,
)
from creditgate.credit.domain.scoring import EventKind, QualityLevel, delta


class SequenceSource:
    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.calls = 0

    async def fetch(self, scope: str) -> str | None:
        self.calls += 1
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_default_delta_table() -> None:
    config = ScopeConfig.default()
    assert delta(config, EventKind.PR_OPENED, QualityLevel.SPAM) == -25
    assert delta(config, EventKind.PR_OPENED, QualityLevel.HIGH) == 15
    assert delta(config, EventKind.COMMENT, QualityLevel.LOW) == -2
    assert delta(config, EventKind.PR_MERGED, QualityLevel.ACCEPTABLE) == 20


def test_unconfigured_entries_score_zero() -> None:
    config = validate_scope_config({"scoring": {"comment": {"high": 4}}})
    assert delta(config, EventKind.COMMENT, QualityLevel.HIGH) == 4
    assert delta(config, EventKind.COMMENT, QualityLevel.SPAM) == 0
    assert delta(config, EventKind.MANUAL_ADJUSTMENT, QualityLevel.HIGH) == 0
    # untouched sections keep their defaults
    assert delta(config, EventKind.PR_OPENED, QualityLevel.SPAM) == -25


def test_quality_levels_are_ordered() -> None:
    assert QualityLevel.SPAM < QualityLevel.LOW < QualityLevel.ACCEPTABLE < QualityLevel.HIGH
    assert max(QualityLevel) is QualityLevel.HIGH


def test_missing_config_yields_defaults() -> None:
    assert validate_scope_config(None) == ScopeConfig.default()
    config = validate_scope_config({"pr_threshold": 40})
    assert config.pr_threshold == 40
    assert config.starting_credit == 100
    assert config.gated_event_kinds == frozenset({EventKind.PR_OPENED})


def test_all_problems_reported_together() -> None:
    with pytest.raises(MalformedScopeConfig) as exc:
        validate_scope_config({"starting_credit": "lots", "pr_threshold": -1, "colour": "blue"})
    problems = exc.value.problems
    assert "starting_credit must be an integer" in problems
    assert "pr_threshold must not be negative" in problems
    assert "unknown key: colour" in problems


def test_blacklist_threshold_must_sit_below_pr_threshold() -> None:
    with pytest.raises(MalformedScopeConfig) as exc:
        validate_scope_config({"pr_threshold": 10, "blacklist_threshold": 10})
    assert exc.value.problems == ("blacklist_threshold must be below pr_threshold",)


def test_booleans_are_not_integers() -> None:
    with pytest.raises(MalformedScopeConfig):
        validate_scope_config({"starting_credit": True})
    with pytest.raises(MalformedScopeConfig):
        validate_scope_config({"scoring": {"pr_opened": {"spam": False}}})


def test_scoring_rejects_unknown_names() -> None:
    with pytest.raises(MalformedScopeConfig) as exc:
        validate_scope_config({"scoring": {"pr_opened": {"superb": 3}, "emoji": {"high": 1}, "blacklist_set": {}}})
    problems = exc.value.problems
    assert "unknown quality level: scoring.pr_opened.superb" in problems
    assert "unknown event kind: emoji" in problems
    assert "event kind is not scored: blacklist_set" in problems


def test_gated_events_are_parsed() -> None:
    config = validate_scope_config({"gated_events": ["pr_opened", "comment"]})
    assert config.is_gated(EventKind.COMMENT)
    assert not config.is_gated(EventKind.PR_MERGED)
    with pytest.raises(MalformedScopeConfig):
        validate_scope_config({"gated_events": "pr_opened"})


def test_yaml_parse_errors_are_malformed() -> None:
    with pytest.raises(MalformedScopeConfig):
        parse_scope_config_yaml("starting_credit: [unclosed")
    assert parse_scope_config_yaml("") == ScopeConfig.default()


@pytest.mark.asyncio
async def test_file_source_merges_scope_sections(tmp_path) -> None:
    path = tmp_path / "creditgate.yml"
    path.write_text(
        "default:\n  pr_threshold: 40\nscopes:\n  octo/widgets:\n    starting_credit: 60\n",
        encoding="utf-8",
    )
    source = FileScopeConfigSource(path)

    widgets = parse_scope_config_yaml(await source.fetch("octo/widgets"))
    other = parse_scope_config_yaml(await source.fetch("octo/other"))

    assert (widgets.starting_credit, widgets.pr_threshold) == (60, 40)
    assert (other.starting_credit, other.pr_threshold) == (100, 40)


@pytest.mark.asyncio
async def test_provider_caches_until_ttl_expires() -> None:
    clock = ManualClock()
    source = SequenceSource("pr_threshold: 30\n", "pr_threshold: 35\n")
    provider = ScopeConfigProvider(source, ttl_seconds=60, clock=clock)

    assert (await provider.resolve("octo/widgets")).pr_threshold == 30
    clock.now = 59
    assert (await provider.resolve("octo/widgets")).pr_threshold == 30
    clock.now = 61
    assert (await provider.resolve("octo/widgets")).pr_threshold == 35
    assert source.calls == 2


@pytest.mark.asyncio
async def test_provider_keeps_last_known_good_on_malformed_config() -> None:
    clock = ManualClock()
    source = SequenceSource("pr_threshold: 30\n", "pr_threshold: -5\n", RuntimeError("github down"))
    provider = ScopeConfigProvider(source, ttl_seconds=1, clock=clock)

    assert (await provider.resolve("octo/widgets")).pr_threshold == 30
    clock.now = 2
    assert (await provider.resolve("octo/widgets")).pr_threshold == 30
    clock.now = 4
    assert (await provider.resolve("octo/widgets")).pr_threshold == 30


@pytest.mark.asyncio
async def test_provider_falls_back_to_defaults_without_history() -> None:
    provider = ScopeConfigProvider(SequenceSource("starting_credit: nope\n"))
    assert await provider.resolve("octo/widgets") == ScopeConfig.default()

    assert await ScopeConfigProvider(SequenceSource(None)).resolve("octo/widgets") == ScopeConfig.default()
