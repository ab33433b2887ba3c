"""
Lenient normalization of free-text enum values produced by the model.

The model's vocabulary is not fully controllable: it answers in English or
Dutch, with spaces, underscores or descriptive phrases. Analysis fields
(urgency, quality, action, channel) map unknown input to a documented safe
default and log a warning. Pipeline stages and statuses have no safe default
and raise instead.
"""

import logging
import re
from typing import Iterable, Optional

import phonenumbers

from leadpipeline.models.base import (
    ContactChannel,
    LeadQuality,
    LeadStatus,
    PipelineStage,
    RecommendedAction,
    UrgencyLevel,
)
from leadpipeline.utils.error_handling import (
    InvalidEnumError,
    InvalidStageError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

DEFAULT_PHONE_REGION = "NL"


def _key(value: Optional[str]) -> str:
    """Lowercase and strip separators so 'Manual_Intervention' == 'manual intervention'."""
    return re.sub(r"[\s_\-]+", "", (value or "").strip().lower())


_STAGE_SYNONYMS = {
    PipelineStage.TRIAGE: ("triage", "intake", "new", "nieuw", "beoordeling"),
    PipelineStage.NURTURING: ("nurturing", "nurture", "followup", "opvolging", "wachtenopinfo"),
    PipelineStage.ESTIMATION: ("estimation", "estimate", "estimating", "schatting", "begroting", "calculatie"),
    PipelineStage.PROPOSAL: ("proposal", "quote", "quotesent", "offerte", "voorstel"),
    PipelineStage.FULFILLMENT: ("fulfillment", "fulfilment", "dispatch", "partnermatching", "uitvoering"),
    PipelineStage.MANUAL_INTERVENTION: (
        "manualintervention",
        "manual",
        "manualreview",
        "handmatig",
        "handmatigeinterventie",
    ),
    PipelineStage.COMPLETED: ("completed", "complete", "done", "voltooid", "afgerond"),
    PipelineStage.LOST: ("lost", "closedlost", "verloren", "afgewezen"),
}

_STAGE_LOOKUP = {synonym: stage for stage, synonyms in _STAGE_SYNONYMS.items() for synonym in synonyms}

_STATUS_LOOKUP = {_key(status.value): status for status in LeadStatus}
_STATUS_LOOKUP.update({
    "attemptedcontact": LeadStatus.ATTEMPTED_CONTACT,
    "noanswer": LeadStatus.ATTEMPTED_CONTACT,
    "badlead": LeadStatus.BAD_LEAD,
    "needsrescheduling": LeadStatus.NEEDS_RESCHEDULING,
    "gepland": LeadStatus.SCHEDULED,
    "gesloten": LeadStatus.CLOSED,
})


def normalize_pipeline_stage(value: Optional[str]) -> PipelineStage:
    """
    Map a stage name or synonym onto PipelineStage.

    Raises:
        InvalidStageError: if the value matches no stage. Stages never default.
    """
    if isinstance(value, PipelineStage):
        return value
    stage = _STAGE_LOOKUP.get(_key(value))
    if stage is None:
        raise InvalidStageError(value)
    return stage


def is_known_pipeline_stage(value: Optional[str]) -> bool:
    try:
        normalize_pipeline_stage(value)
    except InvalidStageError:
        return False
    return True


def normalize_lead_status(value: Optional[str]) -> LeadStatus:
    """Map a status name onto LeadStatus, raising InvalidEnumError when unknown."""
    if isinstance(value, LeadStatus):
        return value
    status = _STATUS_LOOKUP.get(_key(value))
    if status is None:
        raise InvalidEnumError("lead status", value)
    return status


def normalize_urgency_level(level: Optional[str]) -> UrgencyLevel:
    """Normalize urgency to High/Medium/Low, defaulting to Medium."""
    normalized = (level or "").strip().lower()

    if normalized in ("high", "hoog", "urgent", "spoed", "spoedeisend", "critical"):
        return UrgencyLevel.HIGH
    if normalized in ("medium", "mid", "moderate", "matig", "gemiddeld", "normal"):
        return UrgencyLevel.MEDIUM
    if normalized in ("low", "laag", "non-urgent", "niet-urgent", "minor"):
        return UrgencyLevel.LOW

    logger.warning(f"[NORMALIZE] Unrecognized urgency level '{level}', defaulting to Medium")
    return UrgencyLevel.MEDIUM


def normalize_lead_quality(quality: Optional[str]) -> LeadQuality:
    """Normalize lead quality, defaulting to Potential."""
    normalized = (quality or "").strip().lower()

    if normalized in ("junk", "spam", "rommel", "onzin", "fake"):
        return LeadQuality.JUNK
    if normalized in ("low", "laag"):
        return LeadQuality.LOW
    if normalized in ("potential", "potentieel", "medium", "gemiddeld", "moderate", "mid"):
        return LeadQuality.POTENTIAL
    if normalized in ("high", "hoog", "good", "goed"):
        return LeadQuality.HIGH
    if normalized in ("urgent", "spoed", "critical", "kritiek"):
        return LeadQuality.URGENT

    logger.warning(f"[NORMALIZE] Unrecognized lead quality '{quality}', defaulting to Potential")
    return LeadQuality.POTENTIAL


def normalize_recommended_action(action: Optional[str]) -> RecommendedAction:
    """
    Normalize the recommended action, defaulting to RequestInfo.

    Exact synonyms are checked first; the model often sends a descriptive
    phrase instead, so substring heuristics follow.
    """
    normalized = (action or "").strip().lower()

    if normalized in ("reject", "afwijzen", "weigeren"):
        return RecommendedAction.REJECT
    if normalized in ("requestinfo", "request_info", "request info"):
        return RecommendedAction.REQUEST_INFO
    if normalized in ("schedulesurvey", "schedule_survey", "schedule survey", "survey", "opname", "inmeten"):
        return RecommendedAction.SCHEDULE_SURVEY
    if normalized in ("callimmediately", "call_immediately", "call immediately", "call", "bellen"):
        return RecommendedAction.CALL_IMMEDIATELY

    if any(token in normalized for token in ("reject", "spam", "junk")):
        return RecommendedAction.REJECT
    if any(token in normalized for token in ("call", "bel", "phone")):
        return RecommendedAction.CALL_IMMEDIATELY
    if any(token in normalized for token in ("survey", "opname", "inmeten", "schedule")):
        return RecommendedAction.SCHEDULE_SURVEY
    if any(token in normalized for token in ("info", "contact", "nurtur", "clarif", "request", "more", "review")):
        return RecommendedAction.REQUEST_INFO

    logger.warning(f"[NORMALIZE] Unrecognized recommended action '{action}', defaulting to RequestInfo")
    return RecommendedAction.REQUEST_INFO


def normalize_contact_channel(channel: Optional[str]) -> ContactChannel:
    """Normalize a contact channel; phone-like channels map to WhatsApp, default Email."""
    normalized = (channel or "").strip().lower()

    if "whatsapp" in normalized or normalized == "wa":
        return ContactChannel.WHATSAPP
    if "email" in normalized or "e-mail" in normalized or normalized == "mail":
        return ContactChannel.EMAIL
    if (
        any(token in normalized for token in ("phone", "telefoon", "call", "bel"))
        or normalized in ("tel", "sms")
    ):
        return ContactChannel.WHATSAPP

    logger.warning(f"[NORMALIZE] Unrecognized contact channel '{channel}', defaulting to Email")
    return ContactChannel.EMAIL


def resolve_preferred_channel(has_phone: bool) -> ContactChannel:
    """Channel is derived from contact data: phone present -> WhatsApp, else Email."""
    return ContactChannel.WHATSAPP if has_phone else ContactChannel.EMAIL


def normalize_consumer_role(role: Optional[str]) -> str:
    normalized = (role or "").strip().lower()
    roles = {"owner": "Owner", "tenant": "Tenant", "landlord": "Landlord"}
    if normalized not in roles:
        raise ValidationFailedError("invalid consumer role")
    return roles[normalized]


def normalize_phone(value: Optional[str], region: str = DEFAULT_PHONE_REGION) -> str:
    """
    Format a phone number as E.164, reading national numbers as Dutch.

    Input that does not parse, or is not a valid number, is returned trimmed
    but otherwise unchanged.

    Raises:
        ValidationFailedError: if the value is blank
    """
    raw = (value or "").strip()
    if not raw:
        raise ValidationFailedError("invalid phone")

    try:
        number = phonenumbers.parse(raw, region)
    except phonenumbers.NumberParseException as e:
        logger.warning(f"[NORMALIZE] Unparseable phone number kept as-is: {e}")
        return raw

    if not phonenumbers.is_valid_number(number):
        logger.warning("[NORMALIZE] Invalid phone number kept as-is")
        return raw
    return phonenumbers.format_number(number, phonenumbers.PhoneNumberFormat.E164)


def has_non_empty_missing_information(items: Optional[Iterable[object]]) -> bool:
    """True when any missing-information entry is non-blank."""
    if not items:
        return False
    return any(str(item).strip() for item in items if item is not None)
