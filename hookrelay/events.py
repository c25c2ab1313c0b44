"""Event taxonomy and subscription input validation."""
from typing import Iterable, List, Union
from urllib.parse import urlparse

ALLOWED_EVENTS = (
    "favorite.added",
    "favorite.removed",
    "note.updated",
    "snippets.updated",
    "reading.started",
    "reading.stopped",
    "site.started",
    "site.stopped",
)


class WebhookValidationError(ValueError):
    """Raised when a subscription cannot be registered as requested."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.message = message
        self.code = code


def is_known_event(event: str) -> bool:
    return event in ALLOWED_EVENTS


def validate_url(url: str, production: bool = False) -> str:
    """Return the trimmed URL or raise if it is not an acceptable target."""
    if not url or not isinstance(url, str):
        raise WebhookValidationError("Invalid URL format", "bad_url")

    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError:
        raise WebhookValidationError("Invalid URL format", "bad_url")

    if parsed.scheme not in ("http", "https") or not parsed.netloc or not parsed.hostname:
        raise WebhookValidationError("Invalid URL format", "bad_url")

    if production and parsed.scheme != "https":
        raise WebhookValidationError("HTTPS is required in production", "insecure_url")

    return url


def normalize_events(events: Union[str, Iterable[str], None]) -> List[str]:
    """Accept a list or a comma-separated string; trim, dedupe and check the taxonomy."""
    if events is None:
        raise WebhookValidationError("At least one event is required", "bad_events")

    raw = events.split(",") if isinstance(events, str) else list(events)

    normalized = []
    for event in raw:
        name = str(event).strip()
        if name and name not in normalized:
            normalized.append(name)

    if not normalized:
        raise WebhookValidationError("At least one event is required", "bad_events")

    unknown = [name for name in normalized if not is_known_event(name)]
    if unknown:
        raise WebhookValidationError(
            f"Contains invalid event types: {', '.join(unknown)}", "bad_events"
        )

    return normalized
