import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from marketchat.core.errors import ConversationNotFound, InvalidParticipants, NotAParticipant
from marketchat.models.conversations import Conversation
from marketchat.services import conversations_service, messages_service
from marketchat.services.directory_service import SqlDirectory

from conftest import seed_users


class FakeClock:
    def __init__(self, start):
        self.value = start

    def __call__(self):
        self.value += timedelta(seconds=1)
        return self.value


def test_find_or_create_creates_then_resumes(db, directory):
    conv, created = conversations_service.find_or_create_conversation(db, directory, "u1", "s1")
    again, created_again = conversations_service.find_or_create_conversation(db, directory, "u1", "s1")

    assert created is True
    assert created_again is False
    assert again.id == conv.id
    assert conv.customer_id == "u1"
    assert conv.seller_id == "s1"
    assert conv.last_message_at is None


def test_argument_order_is_normalized(db, directory):
    conv, _ = conversations_service.find_or_create_conversation(db, directory, "u1", "s1")
    swapped, created = conversations_service.find_or_create_conversation(db, directory, "s1", "u1")

    assert created is False
    assert swapped.id == conv.id
    assert (swapped.customer_id, swapped.seller_id) == ("u1", "s1")
    assert db.query(Conversation).count() == 1


@pytest.mark.parametrize(
    "a, b",
    [
        ("u1", "u1"),
        ("u1", "u2"),
        ("s1", "s2"),
        ("u1", "a1"),
        ("u1", "ghost"),
        ("", "s1"),
    ],
)
def test_invalid_participants(db, directory, a, b):
    with pytest.raises(InvalidParticipants):
        conversations_service.find_or_create_conversation(db, directory, a, b)
    assert db.query(Conversation).count() == 0


def test_lost_insert_race_returns_winner(db, directory, session_factory, monkeypatch):
    # another actor commits the pair between our lookup and our insert
    other = session_factory()
    winner, _ = conversations_service.find_or_create_conversation(other, SqlDirectory(other), "s1", "u1")
    other.close()

    real_get_by_pair = conversations_service.get_by_pair
    calls = {"n": 0}

    def stale_first_lookup(session, a, b):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_get_by_pair(session, a, b)

    monkeypatch.setattr(conversations_service, "get_by_pair", stale_first_lookup)

    conv, created = conversations_service.find_or_create_conversation(db, directory, "u1", "s1")

    assert created is False
    assert conv.id == winner.id
    assert calls["n"] == 2
    assert db.query(Conversation).count() == 1


def test_concurrent_find_or_create_yields_one_row(file_engine):
    factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    setup = factory()
    seed_users(setup)
    setup.close()

    n = 6
    barrier = threading.Barrier(n)
    results, errors = [], []

    def actor(i):
        session = factory()
        try:
            barrier.wait()
            a, b = ("u1", "s1") if i % 2 else ("s1", "u1")
            conv, _ = conversations_service.find_or_create_conversation(session, SqlDirectory(session), a, b)
            results.append(conv.id)
        except Exception as e:  # collected and asserted below
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=actor, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(results) == n
    assert len(set(results)) == 1

    check = factory()
    assert check.query(Conversation).count() == 1
    check.close()


def test_get_conversation_and_participant_checks(db, directory):
    conv, _ = conversations_service.find_or_create_conversation(db, directory, "u1", "s1")

    assert conversations_service.get_for_participant(db, conv.id, "s1").id == conv.id

    with pytest.raises(ConversationNotFound):
        conversations_service.get_conversation(db, "missing")
    with pytest.raises(NotAParticipant):
        conversations_service.get_for_participant(db, conv.id, "u2")


def test_list_empty_for_new_viewer(db, directory):
    assert conversations_service.list_conversations_for(db, directory, "u2") == []


def test_list_orders_by_activity_and_counts_unread(db, directory, monkeypatch):
    a, _ = conversations_service.find_or_create_conversation(db, directory, "u1", "s1")
    b, _ = conversations_service.find_or_create_conversation(db, directory, "u1", "s2")

    clock = FakeClock(datetime(2030, 1, 1))
    monkeypatch.setattr(messages_service, "utcnow", clock)

    messages_service.send_message(db, a.id, "s1", "Quote is ready")
    messages_service.send_message(db, a.id, "s1", "Panels in stock")
    messages_service.send_message(db, a.id, "u1", "Thanks!")

    summaries = conversations_service.list_conversations_for(db, directory, "u1")

    # a has messages (2030), b only its creation time (now)
    assert [s.id for s in summaries] == [a.id, b.id]
    top = summaries[0]
    assert top.other_participant.display_name == "SunRidge Solar"
    assert top.other_participant.avatar_url == "https://cdn.example.com/s1.png"
    assert top.last_message.content == "Thanks!"
    assert top.last_message.from_viewer is True
    assert top.unread_count == 2
    assert summaries[1].last_message is None
    assert summaries[1].unread_count == 0

    seller_view = conversations_service.list_conversations_for(db, directory, "s1")
    assert [s.id for s in seller_view] == [a.id]
    assert seller_view[0].unread_count == 1
    assert seller_view[0].other_participant.display_name == "Ayesha Khan"


def test_list_order_is_non_increasing(db, directory, monkeypatch):
    clock = FakeClock(datetime(2030, 1, 1))
    monkeypatch.setattr(messages_service, "utcnow", clock)

    convs = []
    for seller in ("s1", "s2"):
        conv, _ = conversations_service.find_or_create_conversation(db, directory, "u1", seller)
        convs.append(conv)

    messages_service.send_message(db, convs[1].id, "u1", "first")
    messages_service.send_message(db, convs[0].id, "u1", "second")

    summaries = conversations_service.list_conversations_for(db, directory, "u1")
    activity = [s.last_message_at or s.created_at for s in summaries]

    assert activity == sorted(activity, reverse=True)
    assert summaries[0].id == convs[0].id


def test_preview_is_truncated(db, directory, monkeypatch):
    monkeypatch.setattr(conversations_service.settings, "PREVIEW_LENGTH", 10)
    conv, _ = conversations_service.find_or_create_conversation(db, directory, "u1", "s1")
    messages_service.send_message(db, conv.id, "s1", "A 5kW hybrid inverter with batteries")

    summary = conversations_service.list_conversations_for(db, directory, "u1")[0]

    assert summary.last_message.content == "A 5kW hybr"


def test_deleted_participant_is_rendered_as_former_user(db, directory):
    from marketchat.models.users import User

    conv, _ = conversations_service.find_or_create_conversation(db, directory, "u1", "s2")
    db.delete(db.get(User, "s2"))
    db.commit()

    summary = conversations_service.list_conversations_for(db, directory, "u1")[0]

    assert summary.id == conv.id
    assert summary.other_participant.former is True
    assert summary.other_participant.display_name == "Former user"
