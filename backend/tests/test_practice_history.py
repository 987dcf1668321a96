from datetime import datetime, timedelta, timezone

from konjugo.models import ActivityLog, Lexeme, PracticeHistory, PracticeLog, TaskSpec

DEVICE = "device-abc123"
T0 = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _seed_task(db):
    db.add(Lexeme(
        id="lex:gehen", lemma="gehen", pos="verb",
        metadata_json={"level": "A1", "english": "to go", "auxiliary": "sein",
                       "example": {"de": "Ich gehe.", "en": "I go."}},
    ))
    db.add(TaskSpec(
        id="task:gehen:1", lexeme_id="lex:gehen", pos="verb", task_type="conjugate_form",
        renderer="conjugate_form", prompt_json={}, solution_json={"form": "gehe"}, revision=1,
    ))
    db.flush()


def _seed_entry(db, submitted_at, result="correct", device_id=DEVICE, user_id=None, cefr_level="A1", metadata=None):
    db.add(PracticeHistory(
        task_id="task:gehen:1", lexeme_id="lex:gehen", pos="verb", task_type="conjugate_form",
        renderer="conjugate_form", device_id=device_id, user_id=user_id, result=result,
        response_ms=1500, submitted_at=submitted_at, cefr_level=cefr_level, hints_used=False,
        metadata_json=metadata,
    ))
    db.add(PracticeLog(
        task_id="task:gehen:1", lexeme_id="lex:gehen", pos="verb", task_type="conjugate_form",
        device_id=device_id, user_id=user_id, cefr_level=cefr_level or "__", attempted_at=submitted_at,
    ))
    db.flush()


class TestListHistory:
    def test_requires_identity(self, client):
        resp = client.get("/api/practice-history")
        assert resp.status_code == 400
        assert resp.json()["code"] == "DEVICE_ID_REQUIRED"

    def test_invalid_query(self, client):
        resp = client.get("/api/practice-history", params={"deviceId": DEVICE, "limit": 500})
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_HISTORY_QUERY"

    def test_lists_newest_first(self, client, db_session):
        _seed_task(db_session)
        _seed_entry(db_session, T0 - timedelta(hours=2), metadata={"submittedResponse": "gehe", "promptSummary": "ich gehe"})
        _seed_entry(db_session, T0, result="incorrect", metadata={"submittedResponse": "gehte"})
        _seed_entry(db_session, T0, device_id="other-device")
        db_session.commit()

        resp = client.get("/api/practice-history", params={"deviceId": DEVICE})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        history = resp.json()["history"]
        assert [h["result"] for h in history] == ["incorrect", "correct"]

        latest = history[0]
        assert latest["taskId"] == "task:gehen:1"
        assert latest["submittedResponse"] == "gehte"
        assert latest["promptSummary"] == "gehen: conjugate form"
        assert latest["answeredAt"].startswith("2024-03-10T12:00:00")
        assert latest["timeSpentMs"] == 1500
        assert latest["cefrLevel"] == "A1"
        assert latest["hintsUsed"] is False
        assert latest["lexeme"] == {
            "id": "lex:gehen",
            "lemma": "gehen",
            "pos": "verb",
            "level": "A1",
            "english": "to go",
            "example": {"de": "Ich gehe.", "en": "I go."},
            "auxiliary": "sein",
        }
        assert history[1]["promptSummary"] == "ich gehe"

    def test_filters(self, client, db_session):
        _seed_task(db_session)
        _seed_entry(db_session, T0 - timedelta(hours=1), result="correct", cefr_level="A1")
        _seed_entry(db_session, T0, result="incorrect", cefr_level="B1")
        db_session.commit()

        incorrect = client.get("/api/practice-history", params={"deviceId": DEVICE, "result": "incorrect"}).json()
        assert [h["cefrLevel"] for h in incorrect["history"]] == ["B1"]

        a1 = client.get("/api/practice-history", params={"deviceId": DEVICE, "level": "a1"}).json()
        assert [h["result"] for h in a1["history"]] == ["correct"]

        limited = client.get("/api/practice-history", params={"deviceId": DEVICE, "limit": 1}).json()
        assert len(limited["history"]) == 1

    def test_session_user_sees_own_history(self, client, db_session, session_user):
        _seed_task(db_session)
        _seed_entry(db_session, T0, device_id="phone-0001", user_id="user-1")
        _seed_entry(db_session, T0, device_id="phone-0002", user_id="user-2")
        db_session.commit()
        session_user["id"] = "user-1"

        history = client.get("/api/practice-history").json()["history"]
        assert len(history) == 1


class TestClearHistory:
    def test_clears_only_this_device(self, client, db_session):
        _seed_task(db_session)
        _seed_entry(db_session, T0)
        _seed_entry(db_session, T0, device_id="other-device")
        db_session.commit()

        resp = client.delete("/api/practice-history", params={"deviceId": DEVICE})
        assert resp.status_code == 204

        assert db_session.query(PracticeHistory).count() == 1
        assert db_session.query(PracticeLog).count() == 1
        assert db_session.query(PracticeHistory).one().device_id == "other-device"

        activity = db_session.query(ActivityLog).filter(ActivityLog.event_type == "history_cleared").one()
        assert activity.detail_json["removed"] == 1

    def test_requires_identity(self, client):
        resp = client.delete("/api/practice-history")
        assert resp.status_code == 400
        assert resp.json()["code"] == "DEVICE_ID_REQUIRED"
