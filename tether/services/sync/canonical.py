"""
Canonical IDs for external items

The idempotency key of an external item is (user, provider, type, external id).
Providers whose native identifiers are not unique on their own get a
composite external id here, so re-ingestion always lands on the same row.
"""
from urllib.parse import quote

IDEMPOTENCY_COLUMNS = ("user_id", "provider", "type", "external_id")
ON_CONFLICT = ",".join(IDEMPOTENCY_COLUMNS)


def slack_message_id(channel_id: str, message_ts: str) -> str:
    """
    Slack message timestamps are only unique within a channel.

    Examples:
        >>> slack_message_id("C012", "1712345678.000100")
        'C012:1712345678.000100'
    """
    return f"{channel_id}:{message_ts}"


def slack_redirect_url(channel_id: str, message_ts: str) -> str:
    """Deep link that opens the message without knowing the team domain."""
    return (
        "https://slack.com/app_redirect"
        f"?channel={quote(channel_id, safe='')}&message_ts={quote(message_ts, safe='')}"
    )
