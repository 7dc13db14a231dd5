"""
Request encoding and response parsing for the generateContent protocol.

No I/O occurs here; all functions are pure transformations of the log
snapshot and decoded JSON so they can be unit tested directly.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

from .memory import Message

CONTEXT = "context"
REQUESTER = "requester"
RESPONDER = "responder"

# Logical role -> role name on the wire. The upstream requires strict
# user/model alternation, so the context turn is sent as "user".
DEFAULT_WIRE_ROLES: Dict[str, str] = {
    CONTEXT: "user",
    REQUESTER: "user",
    RESPONDER: "model",
}


def assign_role(position: int) -> str:
    """
    Return the logical role of the entry at ``position`` in a snapshot.

    Position 0 is always the context turn; after that odd positions are the
    requester and even positions the responder.  The role follows the
    position in the *current* snapshot, so after eviction the new head
    becomes the context turn.
    """
    if position < 0:
        raise ValueError(f"position must be >= 0, got {position}")
    if position == 0:
        return CONTEXT
    return REQUESTER if position % 2 == 1 else RESPONDER


def encode(
    snapshot: Sequence[Message],
    roles: Mapping[str, str] = DEFAULT_WIRE_ROLES,
) -> List[Dict[str, Any]]:
    """
    Map log entries to the alternating-role ``contents`` list.

    Args:
        snapshot: Messages in log order.
        roles: Logical role → wire role name.

    Returns:
        List of ``{"role": str, "parts": [{"text": str}]}`` in snapshot order.
        An empty snapshot encodes to an empty list.
    """
    return [
        {"role": roles[assign_role(pos)], "parts": [{"text": msg.text}]}
        for pos, msg in enumerate(snapshot)
    ]


def build_request_body(
    snapshot: Sequence[Message],
    roles: Mapping[str, str] = DEFAULT_WIRE_ROLES,
) -> Dict[str, Any]:
    return {"contents": encode(snapshot, roles)}


def extract_generated_text(response_json: Any, fallback: str) -> str:
    """
    Read ``candidates[0].content.parts[0].text`` from a decoded response.

    A structurally valid response without that field is not an error: any
    missing or empty step yields ``fallback``.
    """
    try:
        text = response_json["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return fallback
    if not isinstance(text, str) or not text:
        return fallback
    return text


def extract_error_message(response_json: Any, fallback: str) -> str:
    """Read the nested ``error.message`` of a failure body, else ``fallback``."""
    try:
        message = response_json["error"]["message"]
    except (KeyError, TypeError):
        return fallback
    return str(message) if message else fallback
