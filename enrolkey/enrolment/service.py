# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Self-enrolment service layer.

Admission checks and enrolment creation for self-enrolment offers:
- can_self_enrol: is the offer currently accepting this user
- apply_enrolment: verify the secret and persist the grant
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from enrolkey.auth.service import DatabaseError
from enrolkey.core.events import USER_ENROLLED, DomainEvent, EventDispatcher
from enrolkey.core.logging import get_logger

from .models import EnrolmentGrant, OfferStatus, SelfEnrolmentOffer
from .repository import CourseOfferRepository, GroupSecretRepository


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


# Reasons reported by check_self_enrol
REASON_DISABLED = "disabled"
REASON_NOT_STARTED = "not_started"
REASON_ENDED = "ended"
REASON_NEW_ENROLS_DISABLED = "new_enrols_disabled"
REASON_MAX_ENROLLED = "max_enrolled_reached"
REASON_ALREADY_ENROLLED = "already_enrolled"


# ==============================================================================
# Exceptions
# ==============================================================================


class EnrolmentError(Exception):
    """Base error for a failed enrolment attempt."""


class InvalidEnrolmentKeyError(EnrolmentError):
    """Raised when the presented secret does not unlock the offer."""


class AlreadyEnrolledError(EnrolmentError):
    """Raised when the user already holds a grant for the offer."""


# ==============================================================================
# Service
# ==============================================================================


class SelfEnrolmentService:
    """Applies self-enrolment offers to accounts."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        offers: CourseOfferRepository,
        groups: GroupSecretRepository,
        events: EventDispatcher | None = None,
    ):
        self.session = session
        self.keyspace = keyspace
        self.offers = offers
        self.groups = groups
        self.events = events
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        self._count_grants = self.session.prepare(f"""
            SELECT COUNT(*) AS total FROM {self.keyspace}.enrolment_grants_by_offer
            WHERE offer_id = ?
        """)

        self._get_grant = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrolment_grants_by_offer
            WHERE offer_id = ? AND user_id = ?
        """)

        self._insert_grant_by_offer = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrolment_grants_by_offer
            (offer_id, user_id, id, course_id, group_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """)

        self._insert_grant_by_user = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrolment_grants_by_user
            (user_id, offer_id, id, course_id, group_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """)

        self._add_group_member = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.course_group_members
            (group_id, user_id, added_at)
            VALUES (?, ?, ?)
        """)

    # ==========================================================================
    # Admission
    # ==========================================================================

    async def check_self_enrol(
        self,
        offer: SelfEnrolmentOffer,
        user_id: UUID,
    ) -> str | None:
        """Return why ``user_id`` may not self-enrol via ``offer``, or None."""
        if offer.status != OfferStatus.ENABLED:
            return REASON_DISABLED

        window = offer.window_state()
        if window is not None:
            return window

        if not offer.new_enrols_allowed:
            return REASON_NEW_ENROLS_DISABLED

        if await self.is_enrolled(offer.id, user_id):
            return REASON_ALREADY_ENROLLED

        if offer.max_enrolled > 0:
            enrolled = await self.count_enrolled(offer.id)
            if enrolled >= offer.max_enrolled:
                return REASON_MAX_ENROLLED

        return None

    async def can_self_enrol(self, offer: SelfEnrolmentOffer, user_id: UUID) -> bool:
        """True if the offer currently admits ``user_id``."""
        reason = await self.check_self_enrol(offer, user_id)
        if reason is not None:
            logger.info(
                "self_enrol_not_allowed",
                offer_id=str(offer.id),
                course_id=str(offer.course_id),
                reason=reason,
            )
            return False
        return True

    async def is_enrolled(self, offer_id: UUID, user_id: UUID) -> bool:
        result = await self.session.aexecute(self._get_grant, [offer_id, user_id])
        return result.one() is not None

    async def count_enrolled(self, offer_id: UUID) -> int:
        result = await self.session.aexecute(self._count_grants, [offer_id])
        row = result.one()
        return row.total if row else 0

    # ==========================================================================
    # Enrolment
    # ==========================================================================

    async def apply_enrolment(
        self,
        offer: SelfEnrolmentOffer,
        secret_used: str,
        user_id: UUID,
        group_id: UUID | None = None,
    ) -> EnrolmentGrant:
        """Enrol ``user_id`` through ``offer`` using ``secret_used``.

        With ``group_id`` the secret must be that group's key (in the offer's
        course) and the user is also added to the group. Otherwise the
        secret must equal the offer's password.

        Raises:
            InvalidEnrolmentKeyError: If the secret does not unlock the offer
            AlreadyEnrolledError: If the user is already enrolled
            DatabaseError: If persisting fails
        """
        await self._verify_secret(offer, secret_used, group_id)

        if await self.is_enrolled(offer.id, user_id):
            raise AlreadyEnrolledError(f"Already enrolled via offer {offer.id}")

        grant = EnrolmentGrant(
            user_id=user_id,
            offer_id=offer.id,
            course_id=offer.course_id,
            group_id=group_id,
        )

        try:
            await self.session.aexecute(
                self._insert_grant_by_offer,
                [
                    grant.offer_id,
                    grant.user_id,
                    grant.id,
                    grant.course_id,
                    grant.group_id,
                    grant.created_at,
                ],
            )
            await self.session.aexecute(
                self._insert_grant_by_user,
                [
                    grant.user_id,
                    grant.offer_id,
                    grant.id,
                    grant.course_id,
                    grant.group_id,
                    grant.created_at,
                ],
            )
            if group_id is not None:
                await self.session.aexecute(
                    self._add_group_member,
                    [group_id, user_id, datetime.now(UTC)],
                )
        except Exception as e:
            logger.exception(
                "database_error_apply_enrolment",
                offer_id=str(offer.id),
                user_id=str(user_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise DatabaseError(
                "Could not save enrolment. Please try again.",
                original_error=e,
            ) from e

        logger.info(
            "user_enrolled",
            offer_id=str(offer.id),
            course_id=str(offer.course_id),
            user_id=str(user_id),
            group_id=str(group_id) if group_id else None,
        )

        if self.events is not None:
            await self.events.dispatch(
                DomainEvent(
                    USER_ENROLLED,
                    {
                        "offer_id": offer.id,
                        "course_id": offer.course_id,
                        "user_id": user_id,
                    },
                )
            )

        return grant

    async def _verify_secret(
        self,
        offer: SelfEnrolmentOffer,
        secret_used: str,
        group_id: UUID | None,
    ) -> None:
        if group_id is None:
            if not offer.password or secret_used != offer.password:
                raise InvalidEnrolmentKeyError("Enrolment key does not match offer")
            return

        if not offer.use_group_keys:
            raise InvalidEnrolmentKeyError("Offer does not accept group keys")

        group = await self.groups.get(group_id)
        if group is None or group.course_id != offer.course_id:
            raise InvalidEnrolmentKeyError("Group does not belong to the offer's course")
        if not group.enrolment_key or secret_used != group.enrolment_key:
            raise InvalidEnrolmentKeyError("Enrolment key does not match group")

    async def get_offers(self, offer_ids: list[UUID]) -> list[SelfEnrolmentOffer]:
        """Load offers by id, skipping unknown ids, preserving order."""
        offers = []
        for offer_id in offer_ids:
            offer = await self.offers.get(offer_id)
            if offer is not None:
                offers.append(offer)
        return offers
