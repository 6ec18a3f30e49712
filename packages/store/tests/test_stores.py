"""Tests for prtriage-store implementations."""

from __future__ import annotations

import json
import threading
from types import SimpleNamespace

import pytest

from prtriage_store.base import (
    OVERRIDE_THRESHOLD,
    PatternStoreError,
    extract_keywords,
    path_matches,
)
from prtriage_store.file import JsonFilePatternStore, default_store_path
from prtriage_store.memory import MemoryPatternStore
from prtriage_store.models import GLOBAL, PROJECT, REGEX, LearnedState, Pattern
from prtriage_store.project import load_project_patterns
from prtriage_store.sqlite import SQLitePatternStore

SQL_BODY = "Use parameterized queries. Parameterized queries prevent injection"
SQL_PATTERN_ID = "pattern-parameterized-queries-prevent"


def _comment(body=SQL_BODY, author="coderabbitai[bot]", path=None):
    return SimpleNamespace(body=body, author=author, path=path)


def _decision(action="REJECT", confidence=0.95, source="rule", pattern_id=None, reason="known false positive"):
    return SimpleNamespace(
        action=action,
        confidence=confidence,
        source=source,
        pattern_id=pattern_id,
        reason=reason,
        suggested_reply=None,
    )


def _pattern(id="p1", signature="console.log", scope=GLOBAL, confidence=0.9, action="REJECT", **kwargs):
    return Pattern(id=id, signature=signature, scope=scope, action=action, reason="r", confidence=confidence, **kwargs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestExtractKeywords:
    def test_frequency_then_first_seen(self):
        assert extract_keywords(SQL_BODY) == ["parameterized", "queries", "prevent"]

    def test_drops_stopwords(self):
        assert extract_keywords("the use of this var should be fine") == ["var", "fine"]

    def test_keeps_short_domain_words(self):
        assert extract_keywords("Hardcoded API key detected") == ["hardcoded", "api", "key"]
        assert extract_keywords("XSS in SQL") == ["xss", "sql"]

    def test_empty(self):
        assert extract_keywords("") == []
        assert extract_keywords(None) == []


class TestPathMatches:
    def test_full_path_glob(self):
        assert path_matches("lambda/handler.js", ["lambda/**"])

    def test_basename_glob(self):
        assert path_matches("infra/main.tf", ["*.tf"])

    def test_directory_prefix_anywhere(self):
        assert path_matches("services/cdk/stack.ts", ["cdk"])

    def test_no_match(self):
        assert not path_matches("src/app.js", ["lambda/**", "*.tf"])


# ---------------------------------------------------------------------------
# Pattern model
# ---------------------------------------------------------------------------


class TestPatternModel:
    def test_confidence_clamped(self):
        assert _pattern(confidence=5).confidence == 1.0
        assert _pattern(confidence=-1).confidence == 0.1

    def test_dict_roundtrip(self):
        p = _pattern(files=["lambda/**"], history=[True, False])
        restored = Pattern.from_dict(p.to_dict())
        assert restored == p

    def test_state_skips_unknown_actions(self):
        raw = {"patterns": {"bad": {"signature": "x", "action": "EXPLODE"}, "ok": {"signature": "y", "action": "NIT"}}}
        state = LearnedState.from_dict(raw)
        assert list(state.patterns) == ["ok"]

    @pytest.mark.parametrize(
        "document",
        [
            {"patterns": ["oops"]},
            {"reviewer_feedback": {"bob": 5}},
            {"reviewer_feedback": {"bob": {"sig": "x"}}},
            {"bot_profiles": {"coderabbitai[bot]": None}},
            {"time_saved_minutes": True},
        ],
    )
    def test_state_rejects_wrong_shape(self, document):
        with pytest.raises(ValueError):
            LearnedState.from_dict(document)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class TestFindMatch:
    def test_keywords_must_all_appear(self):
        store = MemoryPatternStore(project_patterns=[_pattern(signature="console.log lambda")])
        assert store.find_match(_comment("Avoid console.log in lambda code")).id == "p1"
        assert store.find_match(_comment("Avoid console.log here")) is None

    def test_keywords_anchor_at_word_start(self):
        store = MemoryPatternStore(project_patterns=[_pattern(signature="hardcoded api key")])
        assert store.find_match(_comment("Hardcoded API keys detected")) is not None
        assert store.find_match(_comment("Hardcoded rapid monkey detected")) is None

    def test_regex_pattern(self):
        store = MemoryPatternStore(project_patterns=[_pattern(signature=r"\bany\b.*webhook", kind=REGEX)])
        assert store.find_match(_comment("Avoid `any` for the webhook payload")) is not None

    def test_invalid_regex_never_matches(self):
        store = MemoryPatternStore(project_patterns=[_pattern(signature="(unclosed", kind=REGEX)])
        assert store.find_match(_comment("(unclosed")) is None

    def test_file_condition(self):
        store = MemoryPatternStore(project_patterns=[_pattern(files=["lambda/**"])])
        assert store.find_match(_comment("console.log", path="lambda/handler.js")) is not None
        assert store.find_match(_comment("console.log", path="src/app.js")) is None
        assert store.find_match(_comment("console.log")) is None

    def test_context_path_overrides_comment(self):
        store = MemoryPatternStore(project_patterns=[_pattern(files=["lambda/**"])])
        assert store.find_match(_comment("console.log"), {"path": "lambda/x.js"}) is not None

    def test_highest_confidence_wins(self):
        state = LearnedState(patterns={"learned": _pattern(id="learned", confidence=0.95)})
        store = MemoryPatternStore(project_patterns=[_pattern(id="curated", scope=PROJECT, confidence=0.8)], state=state)
        assert store.find_match(_comment("console.log")).id == "learned"

    def test_tie_goes_to_project_pattern(self):
        state = LearnedState(patterns={"learned": _pattern(id="learned", confidence=0.9)})
        store = MemoryPatternStore(project_patterns=[_pattern(id="curated", scope=PROJECT, confidence=0.9)], state=state)
        assert store.find_match(_comment("console.log")).id == "curated"

    def test_no_patterns(self):
        assert MemoryPatternStore().find_match(_comment()) is None


# ---------------------------------------------------------------------------
# Recording outcomes
# ---------------------------------------------------------------------------


class TestRecordOutcome:
    def test_high_confidence_decision_seeds_pattern(self):
        store = MemoryPatternStore()
        pattern = store.record_outcome(_comment(), _decision())

        assert pattern.id == SQL_PATTERN_ID
        assert pattern.confidence == pytest.approx(0.7)
        assert pattern.action == "REJECT"
        stats = store.stats()
        assert stats["reviews_processed"] == 1
        assert stats["patterns_learned"] == 1
        assert stats["time_saved_minutes"] == pytest.approx(2.5)
        assert stats["bot_profiles"] == {"coderabbitai[bot]": 1}

    def test_low_confidence_decision_only_counts(self):
        store = MemoryPatternStore()
        assert store.record_outcome(_comment(), _decision(action="DISCUSS", confidence=0.3)) is None
        stats = store.stats()
        assert stats["reviews_processed"] == 1
        assert stats["learned_patterns"] == 0
        assert stats["time_saved_minutes"] == 0

    def test_recurrence_reinforces(self):
        store = MemoryPatternStore()
        store.record_outcome(_comment(), _decision())
        pattern = store.record_outcome(_comment(), _decision())
        assert pattern.confidence == pytest.approx(0.71)
        assert pattern.occurrences == 2

    def test_different_action_does_not_reinforce(self):
        store = MemoryPatternStore()
        store.record_outcome(_comment(), _decision())
        assert store.record_outcome(_comment(), _decision(action="AUTO_FIX")) is None
        assert store.learned_patterns()[0].confidence == pytest.approx(0.7)

    def test_acceptance_reinforces_after_three_applications(self):
        store = MemoryPatternStore()
        for _ in range(2):
            store.record_outcome(_comment(), _decision(), {"accepted": True})
        pattern = store.record_outcome(_comment(), _decision(), {"accepted": True})
        assert pattern.history == [True, True, True]
        assert pattern.confidence == pytest.approx(0.82)

    def test_rejection_decays_to_floor(self):
        state = LearnedState(patterns={"p1": _pattern(confidence=0.7)})
        store = MemoryPatternStore(state=state)
        decision = _decision(source="pattern", pattern_id="p1")

        for _ in range(3):
            pattern = store.record_outcome(_comment("console.log"), decision, {"accepted": False})
        assert pattern.confidence == pytest.approx(0.5)

        for _ in range(5):
            pattern = store.record_outcome(_comment("console.log"), decision, {"accepted": False})
        assert pattern.confidence == pytest.approx(0.1)

    def test_history_bounded(self):
        state = LearnedState(patterns={"p1": _pattern()})
        store = MemoryPatternStore(state=state)
        decision = _decision(source="pattern", pattern_id="p1")
        for _ in range(15):
            pattern = store.record_outcome(_comment("console.log"), decision, {"accepted": True})
        assert len(pattern.history) == 10

    def test_curated_pattern_left_untouched(self):
        curated = _pattern(id="curated", scope=PROJECT, confidence=1.0)
        store = MemoryPatternStore(project_patterns=[curated])
        decision = _decision(source="pattern", pattern_id="curated")

        assert store.record_outcome(_comment("console.log"), decision, {"accepted": False}) is None
        assert store.project_patterns[0].confidence == 1.0
        assert store.stats()["reviews_processed"] == 1

    def test_enum_like_values_accepted(self):
        store = MemoryPatternStore()
        decision = _decision(action=SimpleNamespace(value="REJECT"), source=SimpleNamespace(value="rule"))
        assert store.record_outcome(_comment(), decision).action == "REJECT"


# ---------------------------------------------------------------------------
# Learning from overrides
# ---------------------------------------------------------------------------


class TestLearnFromOverride:
    BODY = "Stop flagging console statements in lambda handlers"

    def test_below_threshold_tracks_frequency(self):
        store = MemoryPatternStore()
        for expected in range(1, OVERRIDE_THRESHOLD):
            result = store.learn_from_override(_comment(self.BODY, author="alice"))
            assert result.frequency == expected
            assert not result.materialized
        assert store.learned_patterns() == []

    def test_materializes_at_threshold(self):
        store = MemoryPatternStore()
        for _ in range(OVERRIDE_THRESHOLD):
            result = store.learn_from_override(_comment(self.BODY, author="alice"), {"action": "REJECT"})

        assert result.materialized
        assert result.pattern.id == "override-alice-stop-flagging-console"
        assert result.pattern.confidence == pytest.approx(0.45)
        assert result.pattern.action == "REJECT"
        assert result.pattern.learned_from == "alice"
        assert store.stats()["patterns_learned"] == 1

    def test_confidence_grows_to_ceiling(self):
        store = MemoryPatternStore()
        for _ in range(10):
            result = store.learn_from_override(_comment(self.BODY, author="alice"))
        assert result.pattern.confidence == pytest.approx(0.9)
        assert result.pattern.action == "DISCUSS"
        assert store.stats()["patterns_learned"] == 1

    def test_reviewers_tracked_separately(self):
        store = MemoryPatternStore()
        for _ in range(2):
            store.learn_from_override(_comment(self.BODY, author="alice"))
        result = store.learn_from_override(_comment(self.BODY, author="bob"))
        assert result.frequency == 1

    def test_no_keywords(self):
        result = MemoryPatternStore().learn_from_override(_comment("ok, no", author="alice"))
        assert result.signature == ""
        assert result.frequency == 0


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class TestStats:
    def test_confidence_distribution(self):
        state = LearnedState(
            patterns={
                "a": _pattern(id="a", confidence=0.95),
                "b": _pattern(id="b", confidence=0.8),
                "c": _pattern(id="c", confidence=0.4),
            }
        )
        stats = MemoryPatternStore(state=state).stats()
        assert stats["confidence_distribution"] == {"high": 1, "medium": 1, "low": 1}
        assert stats["learned_patterns"] == 3


# ---------------------------------------------------------------------------
# MemoryPatternStore
# ---------------------------------------------------------------------------


class TestMemoryPatternStore:
    def test_failed_transaction_not_committed(self):
        store = MemoryPatternStore()
        with pytest.raises(RuntimeError):
            with store._transaction() as state:
                state.reviews_processed = 99
                raise RuntimeError("boom")
        assert store.stats()["reviews_processed"] == 0

    def test_concurrent_updates_not_lost(self):
        store = MemoryPatternStore()

        def worker():
            for _ in range(25):
                store.record_outcome(_comment(), _decision(action="NIT", confidence=0.5))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.stats()["reviews_processed"] == 100

    def test_snapshots_are_copies(self):
        store = MemoryPatternStore()
        store.record_outcome(_comment(), _decision())
        store.learned_patterns()[0].confidence = 0.1
        assert store.learned_patterns()[0].confidence == pytest.approx(0.7)


# ---------------------------------------------------------------------------
# JsonFilePatternStore
# ---------------------------------------------------------------------------


class TestJsonFilePatternStore:
    def test_default_path_namespaced_by_user(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert default_store_path("alice") == tmp_path / ".prtriage" / "alice" / "learned-patterns.json"

    def test_missing_file_is_empty(self, tmp_path):
        store = JsonFilePatternStore(path=tmp_path / "learned.json")
        assert store.learned_patterns() == []
        assert not (tmp_path / "learned.json").exists()

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "learned.json"
        JsonFilePatternStore(path=path).record_outcome(_comment(), _decision())

        reopened = JsonFilePatternStore(path=path)
        assert [p.id for p in reopened.learned_patterns()] == [SQL_PATTERN_ID]
        data = json.loads(path.read_text())
        assert data["version"] == "1.0"
        assert data["reviews_processed"] == 1

    def test_writes_leave_no_temp_files(self, tmp_path):
        store = JsonFilePatternStore(path=tmp_path / "learned.json")
        for _ in range(3):
            store.record_outcome(_comment(), _decision())
        assert sorted(p.name for p in tmp_path.iterdir()) == ["learned.json"]

    def test_merges_writes_from_other_instances(self, tmp_path):
        path = tmp_path / "learned.json"
        first = JsonFilePatternStore(path=path)
        second = JsonFilePatternStore(path=path)
        first.record_outcome(_comment(), _decision())
        second.record_outcome(_comment(), _decision())
        assert JsonFilePatternStore(path=path).stats()["reviews_processed"] == 2

    def test_corrupt_file_reads_empty_and_is_moved_aside(self, tmp_path):
        path = tmp_path / "learned.json"
        path.write_text("{not json")
        store = JsonFilePatternStore(path=path)

        assert store.learned_patterns() == []
        store.record_outcome(_comment(), _decision())

        assert (tmp_path / "learned.json.corrupt").read_text() == "{not json"
        assert json.loads(path.read_text())["reviews_processed"] == 1

    def test_non_mapping_file_reads_empty(self, tmp_path):
        path = tmp_path / "learned.json"
        path.write_text("[1, 2, 3]")
        assert JsonFilePatternStore(path=path).stats()["learned_patterns"] == 0

    @pytest.mark.parametrize(
        "document",
        [
            {"patterns": ["oops"]},
            {"reviewer_feedback": {"bob": 5}},
            {"bot_profiles": ["coderabbitai[bot]"]},
            {"reviews_processed": "many"},
        ],
    )
    def test_wrong_shape_reads_empty(self, tmp_path, document):
        path = tmp_path / "learned.json"
        path.write_text(json.dumps(document))
        store = JsonFilePatternStore(path=path)

        assert store.find_match(_comment()) is None
        assert store.stats()["reviews_processed"] == 0

        store.record_outcome(_comment(), _decision())
        assert json.loads((tmp_path / "learned.json.corrupt").read_text()) == document
        assert json.loads(path.read_text())["reviews_processed"] == 1

    def test_unwritable_location_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = JsonFilePatternStore(path=blocker / "learned.json")
        with pytest.raises(PatternStoreError):
            store.record_outcome(_comment(), _decision())

    def test_concurrent_threads(self, tmp_path):
        store = JsonFilePatternStore(path=tmp_path / "learned.json")

        def worker():
            for _ in range(10):
                store.record_outcome(_comment(), _decision(action="NIT", confidence=0.5))

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.stats()["reviews_processed"] == 30


# ---------------------------------------------------------------------------
# SQLitePatternStore
# ---------------------------------------------------------------------------


class TestSQLitePatternStore:
    def test_record_and_read(self, tmp_path):
        store = SQLitePatternStore(db_path=str(tmp_path / "test.db"), namespace="alice")
        store.record_outcome(_comment(), _decision())
        assert [p.id for p in store.learned_patterns()] == [SQL_PATTERN_ID]
        store.close()

    def test_persists_across_connections(self, tmp_path):
        """Data written by one SQLitePatternStore instance must be readable by another."""
        db = str(tmp_path / "test.db")
        store = SQLitePatternStore(db_path=db, namespace="alice")
        store.record_outcome(_comment(), _decision())
        store.close()

        reopened = SQLitePatternStore(db_path=db, namespace="alice")
        assert reopened.stats()["reviews_processed"] == 1
        reopened.close()

    def test_namespaces_isolated(self, tmp_path):
        db = str(tmp_path / "test.db")
        alice = SQLitePatternStore(db_path=db, namespace="alice")
        bob = SQLitePatternStore(db_path=db, namespace="bob")
        alice.record_outcome(_comment(), _decision())

        assert bob.learned_patterns() == []
        assert bob.namespace == "bob"
        alice.close()
        bob.close()

    def test_default_namespace_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PRTRIAGE_USER", "carol")
        store = SQLitePatternStore(db_path=str(tmp_path / "test.db"))
        assert store.namespace == "carol"
        store.close()

    def test_failed_transaction_rolled_back(self, tmp_path):
        store = SQLitePatternStore(db_path=str(tmp_path / "test.db"), namespace="alice")
        with pytest.raises(RuntimeError):
            with store._transaction() as state:
                state.reviews_processed = 99
                raise RuntimeError("boom")
        assert store.stats()["reviews_processed"] == 0
        store.close()

    def test_parallel_connections_serialize(self, tmp_path):
        db = str(tmp_path / "test.db")
        stores = [SQLitePatternStore(db_path=db, namespace="alice") for _ in range(2)]

        def worker(store):
            for _ in range(10):
                store.record_outcome(_comment(), _decision(action="NIT", confidence=0.5))

        threads = [threading.Thread(target=worker, args=(s,)) for s in stores]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert stores[0].stats()["reviews_processed"] == 20
        for s in stores:
            s.close()

    def test_corrupt_row_reads_empty(self, tmp_path):
        store = SQLitePatternStore(db_path=str(tmp_path / "test.db"), namespace="alice")
        store._conn.execute("INSERT INTO learned_state (namespace, state_json) VALUES ('alice', '{oops')")
        assert store.learned_patterns() == []
        store.close()

    def test_wrong_shape_row_reads_empty(self, tmp_path):
        store = SQLitePatternStore(db_path=str(tmp_path / "test.db"), namespace="alice")
        store._conn.execute(
            "INSERT INTO learned_state (namespace, state_json) VALUES ('alice', ?)",
            (json.dumps({"reviewer_feedback": {"bob": 5}}),),
        )
        assert store.find_match(_comment()) is None
        assert store.stats()["reviews_processed"] == 0
        store.close()


# ---------------------------------------------------------------------------
# Project patterns
# ---------------------------------------------------------------------------


class TestLoadProjectPatterns:
    def test_missing_file(self, tmp_path):
        assert load_project_patterns(str(tmp_path / "nope.yml")) == []

    def test_loads_entries(self, tmp_path):
        path = tmp_path / "patterns.yml"
        path.write_text(
            """
valid_patterns:
  - id: console-log-lambda
    pattern: console.log
    condition:
      files: ["lambda/**"]
    reason: CloudWatch logging
    auto_reply: console.log is fine in Lambda
  - pattern: "\\\\bany\\\\b.*webhook"
    regex: true
    action: defer
"""
        )
        first, second = load_project_patterns(str(path))

        assert first.id == "console-log-lambda"
        assert first.scope == PROJECT
        assert first.action == "REJECT"
        assert first.confidence == 1.0
        assert first.files == ["lambda/**"]
        assert first.reply == "console.log is fine in Lambda"
        assert second.id == "project-2"
        assert second.kind == REGEX
        assert second.action == "DEFER"
        assert second.signature == r"\bany\b.*webhook"

    def test_skips_invalid_entries(self, tmp_path):
        path = tmp_path / "patterns.yml"
        path.write_text(
            """
valid_patterns:
  - reason: no pattern
  - pattern: x
    action: EXPLODE
  - pattern: ok
"""
        )
        patterns = load_project_patterns(str(path))
        assert [p.signature for p in patterns] == ["ok"]

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "patterns.yml"
        path.write_text("valid_patterns: [unclosed")
        assert load_project_patterns(str(path)) == []
