"""Request assembly: flattening turns into provider-neutral chat messages."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from turnbudget.models.chat import ChatMessage
from turnbudget.models.turn import ConversationTurn, ImageRef


def build_messages(
    included: Iterable[ConversationTurn],
    new_user_text: str | None,
    attachments: Sequence[ImageRef] = (),
) -> list[ChatMessage]:
    """Flatten included turns plus the outgoing turn into chat messages.

    Each turn yields its user message (carrying the turn's images) followed
    by its assistant message.  Empty texts produce no message, so a turn
    with an empty reply contributes only its user side.  The system
    preamble is not part of the list; it travels separately on the request.
    """
    messages: list[ChatMessage] = []
    for turn in included:
        if turn.user_text:
            messages.append(ChatMessage(role="user", content=turn.user_text, images=list(turn.images)))
        if turn.assistant_text:
            messages.append(ChatMessage(role="assistant", content=turn.assistant_text))
    if new_user_text or attachments:
        messages.append(
            ChatMessage(role="user", content=new_user_text or "", images=list(attachments))
        )
    return messages

