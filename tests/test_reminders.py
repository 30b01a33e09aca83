"""Test kickoff reminders and their store-backed deduplication."""

from datetime import timedelta

import pytest

import models
import notify
import reminders
from tests.helpers import NOW, make_group, make_match, place


@pytest.fixture
def outbox(monkeypatch):
    """Capture reminders instead of sending them."""
    sent = []

    def fake_send(chat_id, items):
        sent.append((chat_id, items))
        return True

    monkeypatch.setattr(notify, "send_reminder", fake_send)
    return sent


def link(user_id, chat_id, minutes=15):
    with models.get_db() as conn:
        models.upsert_telegram_link(conn, user_id, chat_id, reminder_minutes=minutes)


class TestProcessReminders:
    def test_reminds_users_without_a_bet(self, db, outbox):
        gid = make_group(members=["ana", "ben"])
        kickoff = NOW + timedelta(minutes=15)
        mid = make_match(gid, kickoff=kickoff)
        place("ben", mid, gid, "HOME", kickoff=kickoff)
        link("ana", "chat-ana")
        link("ben", "chat-ben")

        assert reminders.process_reminders(NOW) == 1

        assert len(outbox) == 1
        chat_id, items = outbox[0]
        assert chat_id == "chat-ana"
        match, group_names = items[0]
        assert match["id"] == mid
        assert group_names == ["Sunday League"]

    def test_same_reminder_is_sent_once(self, db, outbox):
        gid = make_group(members=["ana"])
        make_match(gid, kickoff=NOW + timedelta(minutes=15))
        link("ana", "chat-ana")

        reminders.process_reminders(NOW)
        reminders.process_reminders(NOW + timedelta(seconds=30))

        assert len(outbox) == 1

    def test_match_outside_window_is_skipped(self, db, outbox):
        gid = make_group(members=["ana"])
        make_match(gid, kickoff=NOW + timedelta(minutes=40))
        link("ana", "chat-ana")

        assert reminders.process_reminders(NOW) == 0
        assert outbox == []

    def test_respects_each_users_lead_time(self, db, outbox):
        gid = make_group(members=["ana", "ben"])
        make_match(gid, kickoff=NOW + timedelta(minutes=60))
        link("ana", "chat-ana", minutes=15)
        link("ben", "chat-ben", minutes=60)

        reminders.process_reminders(NOW)

        assert [chat for chat, _ in outbox] == ["chat-ben"]

    def test_non_members_are_not_reminded(self, db, outbox):
        gid = make_group(members=["ana"])
        make_match(gid, kickoff=NOW + timedelta(minutes=15))
        link("zed", "chat-zed")

        reminders.process_reminders(NOW)

        assert outbox == []

    def test_telegram_disabled_sends_nothing(self, db, monkeypatch):
        gid = make_group(members=["ana"])
        make_match(gid, kickoff=NOW + timedelta(minutes=15))
        link("ana", "chat-ana")
        posts = []
        monkeypatch.setattr(notify.requests, "post", lambda *a, **kw: posts.append(a))

        assert reminders.process_reminders(NOW) == 0
        assert posts == []


class TestPrune:
    def test_prunes_old_claims_only(self, db):
        with models.get_db() as conn:
            models.record_reminder(conn, "1-ana-15", models.utc_iso(NOW - timedelta(hours=2)))
            models.record_reminder(conn, "2-ana-15", models.utc_iso(NOW - timedelta(minutes=10)))

        assert reminders.prune_reminders(NOW) == 1

        with models.get_db() as conn:
            assert models.record_reminder(conn, "1-ana-15", models.utc_iso(NOW))
            assert not models.record_reminder(conn, "2-ana-15", models.utc_iso(NOW))


class TestMessage:
    def test_message_lists_matches_and_groups(self):
        match = {"home_team": "Arsenal", "away_team": "Chelsea",
                 "kickoff": "2024-05-18T15:15:00+00:00"}
        text = notify.build_reminder_message([(match, ["Sunday League", "Office"])])
        assert "Arsenal vs Chelsea" in text
        assert "15:15 UTC" in text
        assert "Sunday League, Office" in text
