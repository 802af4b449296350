from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from relay.services.event_log import EventType, list_events, log_event


class TestLogEvent:
    def test_writes_row(self, db):
        assert log_event(db, EventType.JOB_RETRY, user_id="1555", payload={"attempts": 1}, error="down") is True

        rows, total = list_events(db)
        assert total == 1
        event = rows[0].to_dict()
        assert event["event_type"] == "job_retry"
        assert event["user_id"] == "1555"
        assert event["payload"] == {"attempts": 1}
        assert event["error"] == "down"

    def test_write_failure_returns_false(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT INTO event_logs", {}, Exception("db down"))

        assert log_event(db, EventType.WEBHOOK_RECEIVED) is False
        db.rollback.assert_called_once()


class TestListEvents:
    def test_filters_and_pagination(self, db):
        for index in range(3):
            log_event(db, EventType.MESSAGE_RECEIVED, user_id="a", payload={"n": index})
        log_event(db, EventType.MESSAGE_RECEIVED, user_id="b")
        log_event(db, EventType.USER_BLOCKED, user_id="a")

        rows, total = list_events(db, event_type="message_received", user_id="a", limit=2)
        assert total == 3
        assert len(rows) == 2
        assert all(row.user_id == "a" for row in rows)

        rows, total = list_events(db, user_id="a", limit=10, offset=3)
        assert total == 4
        assert len(rows) == 1
