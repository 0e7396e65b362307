# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Read-only lookups over self-enrolment offers and course groups.

The resolver only depends on the two protocols below. The Cassandra
implementations read the denormalized lookup tables written by the course
management side; rows come back in clustering (creation) order.
"""

from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from enrolkey.core.logging import get_logger

from .models import CourseGroup, SelfEnrolmentOffer


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


class CourseOfferRepository(Protocol):
    """Lookups over self-enrolment offers."""

    async def get(self, offer_id: UUID) -> SelfEnrolmentOffer | None: ...

    async def find_by_password(self, password: str) -> list[SelfEnrolmentOffer]:
        """Offers whose own password equals ``password`` exactly."""
        ...

    async def find_group_key_offers(self, course_id: UUID) -> list[SelfEnrolmentOffer]:
        """Offers of ``course_id`` configured to accept group keys."""
        ...


class GroupSecretRepository(Protocol):
    """Lookups over course groups and their enrolment keys."""

    async def get(self, group_id: UUID) -> CourseGroup | None: ...

    async def find_by_enrolment_key(self, enrolment_key: str) -> list[CourseGroup]:
        """Groups whose enrolment key equals ``enrolment_key`` exactly."""
        ...


class CassandraOfferRepository:
    """CourseOfferRepository over the self_enrol_offers tables."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_by_id = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.self_enrol_offers
            WHERE id = ?
        """)

        self._ids_by_password = self.session.prepare(f"""
            SELECT offer_id FROM {self.keyspace}.self_enrol_offers_by_password
            WHERE password = ?
        """)

        self._ids_by_course = self.session.prepare(f"""
            SELECT offer_id FROM {self.keyspace}.self_enrol_offers_by_course
            WHERE course_id = ?
        """)

    async def get(self, offer_id: UUID) -> SelfEnrolmentOffer | None:
        result = await self.session.aexecute(self._get_by_id, [offer_id])
        row = result.one()
        return SelfEnrolmentOffer.from_row(row) if row else None

    async def _load(self, offer_ids: list[UUID]) -> list[SelfEnrolmentOffer]:
        offers = []
        for offer_id in offer_ids:
            offer = await self.get(offer_id)
            if offer is None:
                # Lookup row outlived its offer
                logger.warning("offer_lookup_dangling", offer_id=str(offer_id))
                continue
            offers.append(offer)
        return offers

    async def find_by_password(self, password: str) -> list[SelfEnrolmentOffer]:
        result = await self.session.aexecute(self._ids_by_password, [password])
        offers = await self._load([row.offer_id for row in result])
        # The lookup key is the password, but re-check against the source row
        return [o for o in offers if o.password == password]

    async def find_group_key_offers(self, course_id: UUID) -> list[SelfEnrolmentOffer]:
        result = await self.session.aexecute(self._ids_by_course, [course_id])
        offers = await self._load([row.offer_id for row in result])
        return [o for o in offers if o.course_id == course_id and o.use_group_keys]


class CassandraGroupRepository:
    """GroupSecretRepository over the course_groups tables."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_by_id = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.course_groups
            WHERE id = ?
        """)

        self._ids_by_key = self.session.prepare(f"""
            SELECT group_id FROM {self.keyspace}.course_groups_by_enrolment_key
            WHERE enrolment_key = ?
        """)

    async def get(self, group_id: UUID) -> CourseGroup | None:
        result = await self.session.aexecute(self._get_by_id, [group_id])
        row = result.one()
        return CourseGroup.from_row(row) if row else None

    async def find_by_enrolment_key(self, enrolment_key: str) -> list[CourseGroup]:
        result = await self.session.aexecute(self._ids_by_key, [enrolment_key])
        groups = []
        for row in result:
            group = await self.get(row.group_id)
            if group is not None and group.enrolment_key == enrolment_key:
                groups.append(group)
        return groups
