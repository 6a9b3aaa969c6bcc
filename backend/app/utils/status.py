"""Status vocabularies shared by models, services and API responses.

Facebook reports entity state with two overlapping strings (``status`` and
``effective_status``). Everything is funnelled through :func:`map_remote_status`
so the rest of the code only ever sees :class:`EntityStatus`.
"""

import enum


class AccountStatus(str, enum.Enum):
    """Connection state of a stored credential. PAUSED means known-bad."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class SyncStatus(str, enum.Enum):
    IDLE = "IDLE"
    SYNCING = "SYNCING"
    ERROR = "ERROR"


class EntityStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    DELETED = "DELETED"
    ARCHIVED = "ARCHIVED"
    IN_PROCESS = "IN_PROCESS"
    WITH_ISSUES = "WITH_ISSUES"
    PENDING_REVIEW = "PENDING_REVIEW"
    DISAPPROVED = "DISAPPROVED"


# Every remote value we know about, mapped to the local vocabulary.
REMOTE_STATUS_MAP: dict[str, EntityStatus] = {
    "ACTIVE": EntityStatus.ACTIVE,
    "ELIGIBLE": EntityStatus.ACTIVE,
    "PAUSED": EntityStatus.PAUSED,
    "INACTIVE": EntityStatus.PAUSED,
    "CAMPAIGN_PAUSED": EntityStatus.PAUSED,
    "ADSET_PAUSED": EntityStatus.PAUSED,
    "DELETED": EntityStatus.DELETED,
    "REMOVED": EntityStatus.DELETED,
    "ARCHIVED": EntityStatus.ARCHIVED,
    "IN_PROCESS": EntityStatus.IN_PROCESS,
    "WITH_ISSUES": EntityStatus.WITH_ISSUES,
    "PENDING_REVIEW": EntityStatus.PENDING_REVIEW,
    "PENDING_BILLING_INFO": EntityStatus.PENDING_REVIEW,
    "PREAPPROVED": EntityStatus.PENDING_REVIEW,
    "DISAPPROVED": EntityStatus.DISAPPROVED,
}

# Statuses a user may set from the dashboard (mirrored to Facebook).
WRITABLE_STATUSES = frozenset({EntityStatus.ACTIVE, EntityStatus.PAUSED, EntityStatus.ARCHIVED})


def map_remote_status(value: str | None) -> EntityStatus:
    """Map a Facebook status string to :class:`EntityStatus`.

    A missing value is treated as PAUSED (the entity exists but is not
    delivering).  An unrecognised value raises ``ValueError`` so new remote
    vocabulary is noticed instead of silently rendered as something else.
    """
    if not value:
        return EntityStatus.PAUSED
    try:
        return REMOTE_STATUS_MAP[value.strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown Facebook status: {value!r}") from None

