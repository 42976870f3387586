import pytest

import models
from errors import AuthorizationError, NotFoundError, ValidationError

RITA = {"id": "u1", "email": "rita@example.com", "name": "Rita Rider"}
OTTO = {"id": "u2", "email": "otto@example.com", "name": None}


def test_post_and_read(app):
    msg = models.post_chat_message("ride-1", RITA, "  See you at the Frog Pond  ")
    assert msg["text"] == "See you at the Frog Pond"
    assert msg["userName"] == "Rita Rider"
    assert msg["rideId"] == "ride-1"
    assert models.get_chat_messages("ride-1") == [msg]
    assert models.get_chat_messages("ride-2") == []


@pytest.mark.parametrize("user, expected", [
    (OTTO, "otto"),
    ({"id": "u3", "email": None, "name": None}, "Anonymous"),
])
def test_author_name_fallback(app, user, expected):
    assert models.post_chat_message("ride-1", user, "hi")["userName"] == expected


def test_empty_text_rejected(app):
    with pytest.raises(ValidationError):
        models.post_chat_message("ride-1", RITA, "   ")


def test_history_capped_oldest_evicted(app):
    for i in range(models.CHAT_HISTORY_LIMIT + 5):
        models.post_chat_message("ride-1", RITA, f"message {i}")

    messages = models.get_chat_messages("ride-1")
    assert len(messages) == models.CHAT_HISTORY_LIMIT
    assert messages[0]["text"] == "message 5"
    assert messages[-1]["text"] == f"message {models.CHAT_HISTORY_LIMIT + 4}"


def test_author_deletes_own_message(app):
    msg = models.post_chat_message("ride-1", RITA, "oops")
    models.delete_chat_message("ride-1", msg["id"], user_id="u1")
    assert models.get_chat_messages("ride-1") == []


def test_cannot_delete_someone_elses_message(app):
    msg = models.post_chat_message("ride-1", RITA, "mine")
    with pytest.raises(AuthorizationError):
        models.delete_chat_message("ride-1", msg["id"], user_id="u2")
    assert len(models.get_chat_messages("ride-1")) == 1


def test_admin_deletes_any_message(app):
    msg = models.post_chat_message("ride-1", RITA, "spam")
    keep = models.post_chat_message("ride-1", OTTO, "real talk")
    models.delete_chat_message("ride-1", msg["id"], is_admin=True)
    assert models.get_chat_messages("ride-1") == [keep]


def test_delete_missing_message(app):
    with pytest.raises(NotFoundError):
        models.delete_chat_message("ride-1", "nope", is_admin=True)
