"""Classification of game-session failure reasons

Keyword policy deciding whether a disconnect, kick or error reason means the
server is down (connectivity) or that the server refused this account
(account/policy). Reasons matching neither list count as connectivity, so an
unknown failure keeps the bot in the retry and warning path instead of being
dropped silently.
"""

from typing import Optional

from fleetbot.exceptions import FailureKind

SERVER_DOWN_KEYWORDS = (
    "connection timed out",
    "connection refused",
    "network unreachable",
    "host unreachable",
    "no route to host",
    "connection reset",
    "server closed",
    "timeout",
)

ACCOUNT_POLICY_KEYWORDS = (
    "please log into xbox",
    "loggedinotherlocation",
    "logged in other location",
    "duplicate_login",
    "authentication",
    "xbox live",
    "microsoft account",
    "premium account",
    "verify username",
    "whitelist",
    "banned",
    "kicked",
    "full server",
    "server is full",
    "server_full",
    "outdated client",
    "outdated server",
    "edition mismatch",
)

# Raised by the client itself when a connect attempt outlives its deadline
ROUTINE_ERRORS = (
    "connect timed out",
)


def classify_reason(reason: Optional[str]) -> FailureKind:
    """Map a failure reason to a FailureKind"""
    if not reason:
        return FailureKind.CONNECTIVITY

    text = reason.lower()
    if any(keyword in text for keyword in SERVER_DOWN_KEYWORDS):
        return FailureKind.CONNECTIVITY
    if any(keyword in text for keyword in ACCOUNT_POLICY_KEYWORDS):
        return FailureKind.ACCOUNT_POLICY
    return FailureKind.CONNECTIVITY


def is_server_down_reason(reason: Optional[str]) -> bool:
    """True when the reason points at the server being down or unreachable"""
    return classify_reason(reason) == FailureKind.CONNECTIVITY


def is_routine_error(reason: Optional[str]) -> bool:
    """Errors that are retried without telling the owner"""
    if not reason:
        return False
    text = reason.lower()
    return any(text == routine or text.startswith(routine) for routine in ROUTINE_ERRORS)
