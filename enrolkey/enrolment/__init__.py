"""Self-enrolment offers, enrolment key resolution and enrolment application."""

from .models import (
    ENROLMENT_TABLES_CQL,
    CourseGroup,
    EnrolmentGrant,
    MatchedOffer,
    OfferScope,
    OfferStatus,
    SelfEnrolmentOffer,
)
from .repository import (
    CassandraGroupRepository,
    CassandraOfferRepository,
    CourseOfferRepository,
    GroupSecretRepository,
)
from .resolver import EnrolmentKeyResolver
from .service import SelfEnrolmentService


__all__ = [
    "ENROLMENT_TABLES_CQL",
    "CassandraGroupRepository",
    "CassandraOfferRepository",
    "CourseGroup",
    "CourseOfferRepository",
    "EnrolmentGrant",
    "EnrolmentKeyResolver",
    "GroupSecretRepository",
    "MatchedOffer",
    "OfferScope",
    "OfferStatus",
    "SelfEnrolmentOffer",
    "SelfEnrolmentService",
]
