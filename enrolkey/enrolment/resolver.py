"""Enrolment key resolution.

Turns a signup token into every self-enrolment offer it unlocks. Two passes:

1. course pass: offers whose own password equals the token
2. group pass: groups whose key equals the token, joined to the offers of
   the same course that accept group keys

The result is the course pass followed by the group pass. An offer found by
both passes is returned twice; within one pass each offer appears once.
Matching is exact string equality.
"""

from uuid import UUID

from enrolkey.core.logging import get_logger

from .models import MatchedOffer, OfferScope
from .repository import CourseOfferRepository, GroupSecretRepository


logger = get_logger(__name__)


class EnrolmentKeyResolver:
    """Resolves signup tokens against offers and group keys. Read-only."""

    def __init__(
        self,
        offers: CourseOfferRepository,
        groups: GroupSecretRepository,
    ):
        self.offers = offers
        self.groups = groups

    async def resolve_offers(self, signup_token: str) -> list[MatchedOffer]:
        """Return all offers unlocked by ``signup_token``, course matches first.

        An empty token never matches: a blank password means an offer has
        no key at all.
        """
        if not signup_token:
            return []

        course_matches = await self._course_matches(signup_token)
        group_matches = await self._group_matches(signup_token)

        logger.info(
            "enrolment_key_resolved",
            course_matches=len(course_matches),
            group_matches=len(group_matches),
        )

        return course_matches + group_matches

    async def _course_matches(self, signup_token: str) -> list[MatchedOffer]:
        matches: list[MatchedOffer] = []
        seen: set[UUID] = set()

        for offer in await self.offers.find_by_password(signup_token):
            if offer.id in seen or offer.password != signup_token:
                continue
            seen.add(offer.id)
            matches.append(
                MatchedOffer(
                    offer=offer,
                    secret_used=offer.password,
                    scope=OfferScope.COURSE,
                )
            )
        return matches

    async def _group_matches(self, signup_token: str) -> list[MatchedOffer]:
        matches: list[MatchedOffer] = []
        seen: set[UUID] = set()

        for group in await self.groups.find_by_enrolment_key(signup_token):
            if group.enrolment_key != signup_token:
                continue
            for offer in await self.offers.find_group_key_offers(group.course_id):
                if offer.id in seen or not offer.use_group_keys:
                    continue
                if offer.course_id != group.course_id:
                    continue
                seen.add(offer.id)
                matches.append(
                    MatchedOffer(
                        offer=offer,
                        secret_used=group.enrolment_key,
                        scope=OfferScope.GROUP,
                        group_id=group.id,
                    )
                )
        return matches
