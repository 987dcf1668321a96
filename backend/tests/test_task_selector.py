"""Tests for filtering, ordering and interleaving of practice tasks."""

from datetime import datetime, timedelta, timezone

import pytest

from konjugo.errors import InvalidPosFilter, InvalidTaskType
from konjugo.models import Lexeme, PracticeHistory, PracticeLog, TaskSpec
from konjugo.services.practice_log import log_practice_attempt
from konjugo.services.task_registry import DEFAULT_TASK_REGISTRY
from konjugo.services.task_selector import (
    TaskQuery,
    merge_task_groups,
    normalise_cefr_level,
    normalise_pos_filter,
    resolve_task_level,
    resolve_task_types,
    select_tasks,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
DEVICE = "device-abc123"

_RENDERERS = {"verb": "conjugate_form", "noun": "noun_case_declension", "adjective": "adj_ending"}


def _seed_lexeme(db, lexeme_id, lemma, pos="verb", level=None, metadata=None):
    meta = dict(metadata or {})
    if level:
        meta["level"] = level
    lexeme = Lexeme(id=lexeme_id, lemma=lemma, pos=pos, metadata_json=meta or None)
    db.add(lexeme)
    db.flush()
    return lexeme


def _seed_task(db, task_id, lexeme_id, pos="verb", task_type=None, updated_at=NOW, prompt=None, revision=1):
    task_type = task_type or _RENDERERS[pos]
    task = TaskSpec(
        id=task_id, lexeme_id=lexeme_id, pos=pos, task_type=task_type, renderer=task_type,
        prompt_json=prompt if prompt is not None else {"lemma": lexeme_id},
        solution_json={"form": "x"}, revision=revision,
        created_at=updated_at, updated_at=updated_at,
    )
    db.add(task)
    db.flush()
    return task


def _seed_history(db, task, submitted_at, device_id=DEVICE, user_id=None):
    db.add(PracticeHistory(
        task_id=task.id, lexeme_id=task.lexeme_id, pos=task.pos, task_type=task.task_type,
        renderer=task.renderer, device_id=device_id, user_id=user_id, result="correct",
        response_ms=1200, submitted_at=submitted_at,
    ))
    db.flush()


def _seed_attempt(db, task, attempted_at, device_id=DEVICE, user_id=None, cefr_level="__"):
    db.add(PracticeLog(
        task_id=task.id, lexeme_id=task.lexeme_id, pos=task.pos, task_type=task.task_type,
        device_id=device_id, user_id=user_id, cefr_level=cefr_level, attempted_at=attempted_at,
    ))
    db.flush()


def _ids(result):
    return [t["taskId"] for t in result["tasks"]]


def _task(task_id, task_type="conjugate_form"):
    return {"taskId": task_id, "taskType": task_type}


class TestMergeTaskGroups:
    def test_round_robin_with_cap(self):
        groups = [
            [_task("a1", "A"), _task("a2", "A"), _task("a3", "A")],
            [_task("b1", "B")],
            [_task("c1", "C"), _task("c2", "C")],
        ]
        merged = merge_task_groups(groups, per_type_limit=2)
        assert [t["taskId"] for t in merged] == ["a1", "b1", "c1", "a2", "c2"]
        for task_type in "ABC":
            assert sum(1 for t in merged if t["taskType"] == task_type) <= 2

    def test_duplicates_skipped(self):
        merged = merge_task_groups([[_task("x"), _task("y")], [_task("x"), _task("z")]], per_type_limit=5)
        assert [t["taskId"] for t in merged] == ["x", "y", "z"]

    def test_empty(self):
        assert merge_task_groups([], 3) == []
        assert merge_task_groups([[], []], 3) == []


class TestFilterNormalisation:
    def test_pos_aliases(self):
        assert normalise_pos_filter("Verbs") == "verb"
        assert normalise_pos_filter("adj") == "adjective"
        assert normalise_pos_filter("  ") is None
        with pytest.raises(InvalidPosFilter):
            normalise_pos_filter("adverb")

    def test_task_types_validated_and_deduplicated(self):
        assert resolve_task_types(["noun_case_declension", " conjugate_form", "noun_case_declension"], DEFAULT_TASK_REGISTRY) == [
            "noun_case_declension", "conjugate_form",
        ]
        with pytest.raises(InvalidTaskType):
            resolve_task_types(["translate"], DEFAULT_TASK_REGISTRY)

    def test_cefr_level(self):
        assert normalise_cefr_level(" b2 ") == "B2"
        assert normalise_cefr_level("D1") is None
        assert normalise_cefr_level(None) is None

    def test_resolve_task_level_precedence(self):
        task = {"prompt": {"cefrLevel": "b1"}, "lexeme": {"metadata": {"level": "a2"}}}
        assert resolve_task_level(task) == "A2"
        task = {"prompt": {"cefrLevel": "b1"}, "lexeme": {"metadata": None}}
        assert resolve_task_level(task) == "B1"
        assert resolve_task_level({"prompt": {}, "lexeme": {"metadata": {}}}) is None


class TestSelectTasksAnonymous:
    def test_orders_by_updated_then_id(self, db_session):
        _seed_lexeme(db_session, "lex:gehen", "gehen")
        _seed_task(db_session, "t-b", "lex:gehen", updated_at=NOW - timedelta(hours=1), revision=1)
        _seed_task(db_session, "t-a", "lex:gehen", updated_at=NOW - timedelta(hours=1), revision=2)
        _seed_task(db_session, "t-c", "lex:gehen", updated_at=NOW, revision=3)
        db_session.commit()

        result = select_tasks(db_session, TaskQuery(), now=NOW)
        assert _ids(result) == ["t-c", "t-a", "t-b"]

    def test_payload_shape(self, db_session):
        _seed_lexeme(db_session, "lex:gehen", "gehen", level="A1",
                     metadata={"example": {"de": " Ich gehe. ", "en": ""}})
        _seed_task(db_session, "t1", "lex:gehen", prompt={"lemma": "gehen", "example": {"de": "", "en": ""}})
        db_session.commit()

        [task] = select_tasks(db_session, TaskQuery(), now=NOW)["tasks"]
        assert task["taskId"] == "t1"
        assert task["taskType"] == "conjugate_form"
        assert task["renderer"] == "conjugate_form"
        assert task["pos"] == "verb"
        assert task["queueCap"] == 30
        assert task["solution"] == {"form": "x"}
        assert task["prompt"] == {"lemma": "gehen"}
        assert task["lexeme"] == {
            "id": "lex:gehen",
            "lemma": "gehen",
            "metadata": {"level": "A1", "example": {"de": "Ich gehe.", "en": None}},
        }

    def test_pos_and_type_filters(self, db_session):
        _seed_lexeme(db_session, "lex:gehen", "gehen")
        _seed_lexeme(db_session, "lex:haus", "Haus", pos="noun")
        _seed_task(db_session, "t-verb", "lex:gehen")
        _seed_task(db_session, "t-noun", "lex:haus", pos="noun")
        db_session.commit()

        assert _ids(select_tasks(db_session, TaskQuery(pos="noun"), now=NOW)) == ["t-noun"]
        result = select_tasks(db_session, TaskQuery(task_types=["conjugate_form"]), now=NOW)
        assert _ids(result) == ["t-verb"]
        assert list(result["tasksByType"]) == ["conjugate_form"]

    def test_limit(self, db_session):
        _seed_lexeme(db_session, "lex:gehen", "gehen")
        for i in range(5):
            _seed_task(db_session, f"t{i}", "lex:gehen", revision=i + 1)
        db_session.commit()
        assert len(select_tasks(db_session, TaskQuery(limit=3), now=NOW)["tasks"]) == 3

    def test_unknown_task_type_pruned(self, db_session):
        _seed_lexeme(db_session, "lex:gehen", "gehen")
        _seed_lexeme(db_session, "lex:schnell", "schnell", pos="adjective")
        _seed_task(db_session, "t-verb", "lex:gehen")
        _seed_task(db_session, "t-adj", "lex:schnell", pos="adjective")
        db_session.commit()

        registry = DEFAULT_TASK_REGISTRY.without("adj_ending")
        result = select_tasks(db_session, TaskQuery(), registry=registry, now=NOW)
        assert _ids(result) == ["t-verb"]
        assert db_session.query(TaskSpec).filter(TaskSpec.id == "t-adj").count() == 0


class TestLevelFilter:
    def _seed(self, db):
        _seed_lexeme(db, "lex:gehen", "gehen", level="a1")
        _seed_lexeme(db, "lex:laufen", "laufen")
        _seed_lexeme(db, "lex:fahren", "fahren", level="B1")
        _seed_lexeme(db, "lex:haus", "Haus", pos="noun", level="B1")
        _seed_lexeme(db, "lex:baum", "Baum", pos="noun", level="A1")
        _seed_task(db, "t-gehen", "lex:gehen", prompt={"cefrLevel": "B2"})
        _seed_task(db, "t-laufen", "lex:laufen", prompt={"cefrLevel": "a1"})
        _seed_task(db, "t-fahren", "lex:fahren")
        _seed_task(db, "t-bare", "lex:fahren", prompt={}, revision=2, updated_at=NOW - timedelta(minutes=1))
        _seed_task(db, "t-haus", "lex:haus", pos="noun")
        _seed_task(db, "t-baum", "lex:baum", pos="noun")
        db.commit()

    @pytest.mark.parametrize("push_down", [True, False])
    def test_lexeme_level_before_prompt_level(self, db_session, push_down):
        self._seed(db_session)
        result = select_tasks(
            db_session, TaskQuery(pos="verb", levels=["A1"]), now=NOW, push_down_level_filter=push_down,
        )
        assert sorted(_ids(result)) == ["t-gehen", "t-laufen"]

    def test_sql_and_python_filters_agree(self, db_session):
        self._seed(db_session)
        for levels in (["A1"], ["B1"], ["A1", "B1"], ["C2"]):
            pushed = select_tasks(db_session, TaskQuery(levels=levels), now=NOW, push_down_level_filter=True)
            post = select_tasks(db_session, TaskQuery(levels=levels), now=NOW, push_down_level_filter=False)
            assert _ids(pushed) == _ids(post), levels

    def test_filters_agree_when_limit_cuts_candidates(self, db_session):
        _seed_lexeme(db_session, "lex:gehen", "gehen", level="A1")
        _seed_lexeme(db_session, "lex:fahren", "fahren", level="A2")
        _seed_task(db_session, "t-a2", "lex:fahren", updated_at=NOW)
        _seed_task(db_session, "t-a1", "lex:gehen", updated_at=NOW - timedelta(hours=1))
        db_session.commit()

        query = TaskQuery(task_types=["conjugate_form"], levels=["A1"], limit=1)
        pushed = select_tasks(db_session, query, now=NOW, push_down_level_filter=True)
        post = select_tasks(db_session, query, now=NOW, push_down_level_filter=False)
        assert _ids(pushed) == _ids(post) == ["t-a1"]

    def test_single_type_uses_first_level(self, db_session):
        _seed_lexeme(db_session, "lex:gehen", "gehen", level="A1")
        _seed_lexeme(db_session, "lex:fahren", "fahren", level="A2")
        _seed_task(db_session, "t-a2", "lex:fahren", updated_at=NOW)
        _seed_task(db_session, "t-a1", "lex:gehen", updated_at=NOW - timedelta(hours=1))
        db_session.commit()

        result = select_tasks(
            db_session, TaskQuery(task_types=["conjugate_form"], levels=["A1", "A2"]), now=NOW,
        )
        assert _ids(result) == ["t-a1"]

    def test_levels_pair_with_types_positionally(self, db_session):
        self._seed(db_session)
        result = select_tasks(
            db_session,
            TaskQuery(task_types=["conjugate_form", "noun_case_declension"], levels=["B1", "A1"]),
            now=NOW,
        )
        assert result["tasksByType"]["conjugate_form"][0]["taskId"] == "t-fahren"
        assert {t["taskId"] for t in result["tasksByType"]["conjugate_form"]} == {"t-fahren", "t-bare"}
        assert [t["taskId"] for t in result["tasksByType"]["noun_case_declension"]] == ["t-baum"]

    def test_missing_positional_level_uses_first(self, db_session):
        self._seed(db_session)
        result = select_tasks(
            db_session,
            TaskQuery(task_types=["noun_case_declension", "conjugate_form"], levels=["A1"]),
            now=NOW,
        )
        assert [t["taskId"] for t in result["tasksByType"]["noun_case_declension"]] == ["t-baum"]
        assert sorted(t["taskId"] for t in result["tasksByType"]["conjugate_form"]) == ["t-gehen", "t-laufen"]


class TestMultipleTypes:
    def test_interleaves_types(self, db_session):
        _seed_lexeme(db_session, "lex:gehen", "gehen")
        _seed_lexeme(db_session, "lex:haus", "Haus", pos="noun")
        for i in range(3):
            _seed_task(db_session, f"v{i}", "lex:gehen", revision=i + 1, updated_at=NOW - timedelta(minutes=i))
        for i in range(2):
            _seed_task(db_session, f"n{i}", "lex:haus", pos="noun", revision=i + 1, updated_at=NOW - timedelta(minutes=i))
        db_session.commit()

        result = select_tasks(
            db_session, TaskQuery(task_types=["conjugate_form", "noun_case_declension"], limit=2), now=NOW,
        )
        assert _ids(result) == ["v0", "n0", "v1", "n1"]
        assert [t["taskId"] for t in result["tasksByType"]["conjugate_form"]] == ["v0", "v1"]

    def test_empty_type_still_listed(self, db_session):
        _seed_lexeme(db_session, "lex:gehen", "gehen")
        _seed_task(db_session, "v0", "lex:gehen")
        db_session.commit()

        result = select_tasks(
            db_session, TaskQuery(task_types=["conjugate_form", "adj_ending"]), now=NOW,
        )
        assert _ids(result) == ["v0"]
        assert result["tasksByType"]["adj_ending"] == []


class TestIdentityOrdering:
    def _seed_pair(self, db):
        _seed_lexeme(db, "lex:gehen", "gehen", level="A1")
        # t-recent is newer, so it wins without practice data
        recent = _seed_task(db, "t-recent", "lex:gehen", revision=1, updated_at=NOW)
        other = _seed_task(db, "t-other", "lex:gehen", revision=2, updated_at=NOW - timedelta(days=1))
        db.commit()
        return recent, other

    def test_recent_attempt_ranked_last(self, db_session):
        recent, _ = self._seed_pair(db_session)
        _seed_attempt(db_session, recent, NOW - timedelta(hours=1))
        _seed_history(db_session, recent, NOW - timedelta(hours=1))
        db_session.commit()

        result = select_tasks(db_session, TaskQuery(device_id=DEVICE), now=NOW)
        assert _ids(result) == ["t-other", "t-recent"]

    def test_attempt_outside_window_does_not_suppress(self, db_session):
        recent, other = self._seed_pair(db_session)
        _seed_attempt(db_session, recent, NOW - timedelta(hours=7))
        _seed_history(db_session, recent, NOW - timedelta(hours=7))
        _seed_history(db_session, other, NOW - timedelta(hours=8))
        db_session.commit()

        result = select_tasks(db_session, TaskQuery(device_id=DEVICE), now=NOW)
        # least recently practiced first
        assert _ids(result) == ["t-other", "t-recent"]

    def test_untried_before_tried(self, db_session):
        recent, _ = self._seed_pair(db_session)
        _seed_history(db_session, recent, NOW - timedelta(days=2))
        db_session.commit()

        assert _ids(select_tasks(db_session, TaskQuery(device_id=DEVICE), now=NOW)) == ["t-other", "t-recent"]

    def test_other_device_history_ignored(self, db_session):
        recent, _ = self._seed_pair(db_session)
        _seed_attempt(db_session, recent, NOW - timedelta(hours=1), device_id="someone-else")
        _seed_history(db_session, recent, NOW - timedelta(hours=1), device_id="someone-else")
        db_session.commit()

        assert _ids(select_tasks(db_session, TaskQuery(device_id=DEVICE), now=NOW)) == ["t-recent", "t-other"]

    def test_user_id_matches_across_devices(self, db_session):
        recent, _ = self._seed_pair(db_session)
        _seed_attempt(db_session, recent, NOW - timedelta(hours=1), device_id="phone-0001", user_id="user-1")
        db_session.commit()

        result = select_tasks(db_session, TaskQuery(device_id=DEVICE, user_id="user-1"), now=NOW)
        assert _ids(result) == ["t-other", "t-recent"]

    def test_attempt_at_other_level_does_not_suppress(self, db_session):
        recent, _ = self._seed_pair(db_session)
        _seed_attempt(db_session, recent, NOW - timedelta(hours=1), cefr_level="B2")
        db_session.commit()

        result = select_tasks(db_session, TaskQuery(device_id=DEVICE, levels=["A1"]), now=NOW)
        assert _ids(result) == ["t-recent", "t-other"]

    def test_unspecified_level_attempt_suppresses(self, db_session):
        recent, _ = self._seed_pair(db_session)
        _seed_attempt(db_session, recent, NOW - timedelta(hours=1), cefr_level="__")
        db_session.commit()

        result = select_tasks(db_session, TaskQuery(device_id=DEVICE, levels=["A1"]), now=NOW)
        assert _ids(result) == ["t-other", "t-recent"]

    def test_attempt_logged_without_level_suppresses(self, db_session):
        recent, _ = self._seed_pair(db_session)
        log_practice_attempt(
            db_session, recent.id, recent.lexeme_id, recent.pos, recent.task_type,
            attempted_at=NOW - timedelta(minutes=5), device_id=DEVICE,
        )
        db_session.commit()

        result = select_tasks(db_session, TaskQuery(device_id=DEVICE, levels=["A1"]), now=NOW)
        assert _ids(result) == ["t-other", "t-recent"]

    def test_one_query_per_task_type(self, db_session):
        from tests.conftest import count_queries

        _seed_lexeme(db_session, "lex:gehen", "gehen")
        _seed_lexeme(db_session, "lex:haus", "Haus", pos="noun")
        _seed_task(db_session, "v0", "lex:gehen")
        _seed_task(db_session, "n0", "lex:haus", pos="noun")
        db_session.commit()

        with count_queries(db_session) as counter:
            select_tasks(
                db_session,
                TaskQuery(task_types=["conjugate_form", "noun_case_declension"], device_id=DEVICE),
                now=NOW,
            )
        assert counter["count"] == 2
