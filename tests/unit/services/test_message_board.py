"""Unit tests for MessageBoard."""

from __future__ import annotations

import pytest

from marketplace_service.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from tests.unit.services.conftest import CLIENT, FREELANCER_1, OUTSIDER


@pytest.mark.unit
async def test_post_message_pushes_to_every_participant(market) -> None:
    """Both parties' live connections receive new_message."""
    contract = await market.active_contract()
    client_conn = await market.presence.connect(CLIENT.user_id)
    freelancer_conn = await market.presence.connect(FREELANCER_1.user_id)

    message = await market.board.post_message(
        contract["conversation_id"], CLIENT.user_id, "  Kickoff tomorrow?  "
    )

    assert message["content"] == "Kickoff tomorrow?"
    assert message["type"] == "text"
    assert message["sender_id"] == CLIENT.user_id
    assert "deleted_at" not in message
    for connection in (client_conn, freelancer_conn):
        pushed = connection.queue.get_nowait()
        assert pushed == {"event": "new_message", "data": message}


@pytest.mark.unit
async def test_post_message_participants_only(market) -> None:
    """Someone outside the contract cannot post."""
    contract = await market.active_contract()

    with pytest.raises(AuthorizationError):
        await market.board.post_message(contract["conversation_id"], OUTSIDER.user_id, "hi")


@pytest.mark.unit
async def test_post_message_unknown_conversation(market) -> None:
    """An unknown conversation is CONVERSATION_NOT_FOUND."""
    with pytest.raises(NotFoundError) as exc_info:
        await market.board.post_message("conv-missing", CLIENT.user_id, "hi")
    assert exc_info.value.error == "CONVERSATION_NOT_FOUND"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("content", "message_type"),
    [(None, "text"), ("   ", "text"), ("x" * 2001, "text"), ("hi", "system"), ("hi", 3)],
)
async def test_post_message_validates(market, content, message_type) -> None:
    """Blank, oversized, or system messages are rejected."""
    contract = await market.active_contract()

    with pytest.raises(ValidationError):
        await market.board.post_message(
            contract["conversation_id"], CLIENT.user_id, content, message_type
        )


@pytest.mark.unit
async def test_unread_counts_and_reading_clears_them(market) -> None:
    """Messages from the other party are unread until the conversation is opened."""
    contract = await market.active_contract()
    conversation_id = contract["conversation_id"]
    await market.board.post_message(conversation_id, CLIENT.user_id, "one")
    await market.board.post_message(conversation_id, CLIENT.user_id, "two")

    freelancer_view = await market.board.list_conversations(FREELANCER_1.user_id)
    client_view = await market.board.list_conversations(CLIENT.user_id)
    assert freelancer_view["conversations"][0]["unread_count"] == 2
    assert freelancer_view["conversations"][0]["last_message"]["content"] == "two"
    assert client_view["conversations"][0]["unread_count"] == 0

    page = await market.board.get_conversation(conversation_id, FREELANCER_1.user_id, 1, 50)

    assert [m["content"] for m in page["messages"]] == ["one", "two"]
    assert page["pagination"] == {"page": 1, "limit": 50, "total": 2, "pages": 1}
    after = await market.board.list_conversations(FREELANCER_1.user_id)
    assert after["conversations"][0]["unread_count"] == 0


@pytest.mark.unit
async def test_get_conversation_pages_from_newest(market) -> None:
    """Page 1 holds the newest messages, each page oldest first."""
    contract = await market.active_contract()
    conversation_id = contract["conversation_id"]
    for text in ("a", "b", "c"):
        await market.board.post_message(conversation_id, CLIENT.user_id, text)

    first = await market.board.get_conversation(conversation_id, CLIENT.user_id, 1, 2)
    second = await market.board.get_conversation(conversation_id, CLIENT.user_id, 2, 2)

    assert [m["content"] for m in first["messages"]] == ["b", "c"]
    assert [m["content"] for m in second["messages"]] == ["a"]
    assert first["pagination"]["pages"] == 2


@pytest.mark.unit
async def test_get_conversation_participants_only(market) -> None:
    """An outsider cannot read the conversation."""
    contract = await market.active_contract()

    with pytest.raises(AuthorizationError):
        await market.board.get_conversation(contract["conversation_id"], OUTSIDER.user_id, 1, 20)


@pytest.mark.unit
async def test_list_conversations_only_includes_own(market) -> None:
    """A user sees only conversations they take part in."""
    contract = await market.active_contract()

    mine = await market.board.list_conversations(FREELANCER_1.user_id)
    theirs = await market.board.list_conversations(OUTSIDER.user_id)

    assert [c["conversation_id"] for c in mine["conversations"]] == [
        contract["conversation_id"]
    ]
    assert mine["conversations"][0]["last_message"] is None
    assert theirs == {"conversations": []}


@pytest.mark.unit
async def test_delete_message_sender_only_and_hidden(market) -> None:
    """The sender soft-deletes; the message leaves listings and unread counts."""
    contract = await market.active_contract()
    conversation_id = contract["conversation_id"]
    message = await market.board.post_message(conversation_id, CLIENT.user_id, "oops")

    with pytest.raises(AuthorizationError):
        await market.board.delete_message(message["message_id"], FREELANCER_1.user_id)

    result = await market.board.delete_message(message["message_id"], CLIENT.user_id)

    assert result == {"message_id": message["message_id"], "deleted": True}
    page = await market.board.get_conversation(conversation_id, CLIENT.user_id, 1, 20)
    assert page["messages"] == []
    listing = await market.board.list_conversations(FREELANCER_1.user_id)
    assert listing["conversations"][0]["unread_count"] == 0
    with pytest.raises(NotFoundError) as exc_info:
        await market.board.delete_message(message["message_id"], CLIENT.user_id)
    assert exc_info.value.error == "MESSAGE_NOT_FOUND"
