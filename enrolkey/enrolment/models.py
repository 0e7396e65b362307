"""Self-enrolment models and Cassandra schema.

Provides:
- SelfEnrolmentOffer: a configured self-enrolment instance of a course
- CourseGroup: a course group, optionally carrying its own enrolment key
- MatchedOffer: an offer unlocked by a signup token, with the secret to apply
- EnrolmentGrant: a user's enrolment created through an offer
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from enrolkey.auth.models import ensure_utc_aware


if TYPE_CHECKING:
    from cassandra.cluster import Row


class OfferStatus(str, Enum):
    """Whether an offer currently accepts enrolments."""

    ENABLED = "enabled"
    DISABLED = "disabled"


class OfferScope(str, Enum):
    """How a signup token unlocked an offer."""

    COURSE = "course"  # Token equals the offer's own password
    GROUP = "group"  # Token equals a group key in the offer's course


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

OFFERS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.self_enrol_offers (
    id UUID PRIMARY KEY,
    course_id UUID,
    name TEXT,
    password TEXT,
    use_group_keys BOOLEAN,
    status TEXT,
    enrol_start TIMESTAMP,
    enrol_end TIMESTAMP,
    max_enrolled INT,
    new_enrols_allowed BOOLEAN,
    role TEXT,
    created_at TIMESTAMP
)
"""

OFFERS_BY_PASSWORD_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.self_enrol_offers_by_password (
    password TEXT,
    created_at TIMESTAMP,
    offer_id UUID,
    PRIMARY KEY ((password), created_at, offer_id)
) WITH CLUSTERING ORDER BY (created_at ASC, offer_id ASC)
"""

OFFERS_BY_COURSE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.self_enrol_offers_by_course (
    course_id UUID,
    created_at TIMESTAMP,
    offer_id UUID,
    PRIMARY KEY ((course_id), created_at, offer_id)
) WITH CLUSTERING ORDER BY (created_at ASC, offer_id ASC)
"""

GROUPS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_groups (
    id UUID PRIMARY KEY,
    course_id UUID,
    name TEXT,
    enrolment_key TEXT,
    created_at TIMESTAMP
)
"""

GROUPS_BY_KEY_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_groups_by_enrolment_key (
    enrolment_key TEXT,
    created_at TIMESTAMP,
    group_id UUID,
    PRIMARY KEY ((enrolment_key), created_at, group_id)
) WITH CLUSTERING ORDER BY (created_at ASC, group_id ASC)
"""

GROUP_MEMBERS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_group_members (
    group_id UUID,
    user_id UUID,
    added_at TIMESTAMP,
    PRIMARY KEY ((group_id), user_id)
)
"""

GRANTS_BY_OFFER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrolment_grants_by_offer (
    offer_id UUID,
    user_id UUID,
    id UUID,
    course_id UUID,
    group_id UUID,
    created_at TIMESTAMP,
    PRIMARY KEY ((offer_id), user_id)
)
"""

GRANTS_BY_USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrolment_grants_by_user (
    user_id UUID,
    offer_id UUID,
    id UUID,
    course_id UUID,
    group_id UUID,
    created_at TIMESTAMP,
    PRIMARY KEY ((user_id), offer_id)
)
"""

ENROLMENT_TABLES_CQL = [
    OFFERS_TABLE_CQL,
    OFFERS_BY_PASSWORD_TABLE_CQL,
    OFFERS_BY_COURSE_TABLE_CQL,
    GROUPS_TABLE_CQL,
    GROUPS_BY_KEY_TABLE_CQL,
    GROUP_MEMBERS_TABLE_CQL,
    GRANTS_BY_OFFER_TABLE_CQL,
    GRANTS_BY_USER_TABLE_CQL,
]


# ==============================================================================
# Entities
# ==============================================================================


@dataclass
class SelfEnrolmentOffer:
    """A self-enrolment instance configured on a course."""

    course_id: UUID
    password: str = ""
    id: UUID = field(default_factory=uuid4)
    name: str = ""
    # Group keys of the course also unlock this offer
    use_group_keys: bool = False
    status: OfferStatus = OfferStatus.ENABLED
    enrol_start: datetime | None = None
    enrol_end: datetime | None = None
    # 0 means unlimited
    max_enrolled: int = 0
    new_enrols_allowed: bool = True
    role: str = "student"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: "Row") -> "SelfEnrolmentOffer":
        """Create instance from Cassandra row."""
        return cls(
            id=row.id,
            course_id=row.course_id,
            name=row.name or "",
            password=row.password or "",
            use_group_keys=bool(row.use_group_keys),
            status=OfferStatus(row.status) if row.status else OfferStatus.ENABLED,
            enrol_start=ensure_utc_aware(row.enrol_start),
            enrol_end=ensure_utc_aware(row.enrol_end),
            max_enrolled=row.max_enrolled or 0,
            new_enrols_allowed=(
                True if row.new_enrols_allowed is None else row.new_enrols_allowed
            ),
            role=row.role or "student",
            created_at=ensure_utc_aware(row.created_at) or datetime.now(UTC),
        )

    def window_state(self, now: datetime | None = None) -> str | None:
        """Return "not_started" / "ended" outside the enrolment window, else None."""
        now = now or datetime.now(UTC)
        if self.enrol_start and now < self.enrol_start:
            return "not_started"
        if self.enrol_end and now > self.enrol_end:
            return "ended"
        return None


@dataclass
class CourseGroup:
    """A group inside a course."""

    course_id: UUID
    enrolment_key: str = ""
    name: str = ""
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: "Row") -> "CourseGroup":
        return cls(
            id=row.id,
            course_id=row.course_id,
            name=row.name or "",
            enrolment_key=row.enrolment_key or "",
            created_at=ensure_utc_aware(row.created_at) or datetime.now(UTC),
        )


@dataclass(frozen=True)
class MatchedOffer:
    """An offer unlocked by a signup token.

    ``secret_used`` is what gets presented to the applier: the offer's own
    password for course matches, the group's key for group matches.
    """

    offer: SelfEnrolmentOffer
    secret_used: str
    scope: OfferScope = OfferScope.COURSE
    group_id: UUID | None = None

    @property
    def offer_id(self) -> UUID:
        return self.offer.id


@dataclass
class EnrolmentGrant:
    """Enrolment of a user created through a self-enrolment offer."""

    user_id: UUID
    offer_id: UUID
    course_id: UUID
    group_id: UUID | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
