"""
Prompt builders for the pipeline agents.

User-provided text (service notes, lead notes, call summaries) is sanitized,
truncated and fenced between user-data markers so it cannot pass as
instructions.
"""

import json
import unicodedata
from datetime import datetime
from typing import Any, Dict, List, Optional

from leadpipeline.models import Lead, LeadNote, LeadService, PhotoAnalysis, ServiceType, VisitReport

USER_DATA_BEGIN = "<<<BEGIN_USER_DATA>>>"
USER_DATA_END = "<<<END_USER_DATA>>>"
TRUNCATED_SUFFIX = "... [afgekapt]"
NOT_PROVIDED = "Niet opgegeven"

MAX_NOTE_LENGTH = 2000
MAX_CONSUMER_NOTE = 1000
MAX_NOTES_CHARS = 3000
MAX_PREFERENCES_CHARS = 1200
MAX_PHOTO_CHARS = 2500
MAX_GUIDELINES_CHARS = 3000

# =============================================================================
# TEXT HELPERS
# =============================================================================

def sanitize_user_input(text: Optional[str], max_length: int) -> str:
    """Strip control characters (newlines and tabs survive) and truncate."""
    cleaned = "".join(
        ch for ch in (text or "")
        if ch in "\n\t" or not unicodedata.category(ch).startswith("C")
    )
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length] + TRUNCATED_SUFFIX
    return cleaned


def wrap_user_data(content: str) -> str:
    return f"{USER_DATA_BEGIN}\n{content}\n{USER_DATA_END}"


def truncate_section(section: str, max_chars: int) -> str:
    if len(section) <= max_chars:
        return section
    return section[:max_chars].rstrip() + TRUNCATED_SUFFIX


def _note_priority(note: LeadNote) -> int:
    note_type = note.type.lower().strip()
    body = note.body.lower()
    if "system" in note_type or "log" in note_type:
        return 100
    if any(term in note_type for term in ("call", "phone", "contact", "email", "sms", "whatsapp")):
        return 0
    if any(term in body for term in ("bel", "call", "contact", "alleen", "only", "allerg")):
        return 10
    return 50


def build_notes_section(notes: List[LeadNote], max_chars: int = MAX_NOTES_CHARS) -> str:
    """
    Render notes within a character budget.

    Contact and call notes come first, system notes last; within a priority the
    newest note wins. The note that crosses the budget is cut, the rest dropped.
    """
    if not notes:
        return "No notes"

    ordered = sorted(notes, key=lambda n: n.created_at, reverse=True)
    ordered = sorted(ordered, key=_note_priority)

    lines: List[str] = []
    used = 0
    for note in ordered:
        body = sanitize_user_input(note.body, MAX_NOTE_LENGTH)
        prefix = f"- [{note.type}] {note.created_at.isoformat()}: "
        line = prefix + body
        if used + len(line) + 1 <= max_chars:
            lines.append(line)
            used += len(line) + 1
            continue
        remaining = max_chars - used - len(prefix) - 1
        if remaining > 0 and body[:remaining].strip():
            lines.append(prefix + body[:remaining].strip() + TRUNCATED_SUFFIX)
        break

    if not lines:
        return "No notes"
    return wrap_user_data("\n".join(lines))


def build_preferences_summary(preferences: Dict[str, Any], max_chars: int = MAX_PREFERENCES_CHARS) -> str:
    if not preferences:
        return "No preferences provided"
    lines = []
    for key, value in preferences.items():
        if value in (None, "", [], {}):
            continue
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False)
        lines.append(f"- {key}: {value}")
    if not lines:
        return "No preferences provided"
    return truncate_section(wrap_user_data(sanitize_user_input("\n".join(lines), max_chars)), max_chars + 64)


def build_photo_summary(photo_analysis: Optional[PhotoAnalysis]) -> str:
    if photo_analysis is None:
        return "No photo analysis available"
    parts = [photo_analysis.summary.strip() or "No summary"]
    for observation in photo_analysis.observations:
        parts.append(f"- {observation}")
    return truncate_section("\n".join(parts), MAX_PHOTO_CHARS)


def _service_note(service: LeadService) -> str:
    return wrap_user_data(sanitize_user_input(service.consumer_note or "", MAX_CONSUMER_NOTE))


def _lead_block(lead: Lead, service: LeadService) -> str:
    return (
        "Lead:\n"
        f"- Lead ID: {lead.id}\n"
        f"- Service ID: {service.id}\n"
        f"- Service Type: {service.service_type}\n"
        f"- Pipeline Stage: {service.pipeline_stage}\n"
        f"- Created At: {lead.created_at.isoformat()}\n"
        "\n"
        "Consumer:\n"
        f"- Name: {lead.consumer_first_name} {lead.consumer_last_name}\n"
        f"- Phone: {lead.consumer_phone or NOT_PROVIDED}\n"
        f"- Email: {lead.consumer_email or NOT_PROVIDED}\n"
        f"- Role: {lead.consumer_role}\n"
        "\n"
        "Address:\n"
        f"- {lead.address_street} {lead.address_house_number}, {lead.address_zip_code} {lead.address_city}\n"
    )


def find_service_type(service_types: List[ServiceType], name: str) -> Optional[ServiceType]:
    """Match a service type by name or slug, case-insensitively."""
    key = (name or "").strip().lower()
    for service_type in service_types:
        if service_type.name.strip().lower() == key:
            return service_type
        slug = service_type.slug or service_type.name.strip().lower().replace(" ", "-")
        if slug.strip().lower() == key:
            return service_type
    return None


def build_intake_context(service_types: List[ServiceType], current_service_type: str) -> str:
    service_type = find_service_type(service_types, current_service_type)
    if service_type is None:
        return "Intake Requirements for selected service type: Not found."

    lines = [f"Selected service type: {current_service_type}", ""]
    if service_type.description and service_type.description.strip():
        lines.append(f"Description: {service_type.description.strip()}")
    if service_type.intake_guidelines and service_type.intake_guidelines.strip():
        lines.append("Intake Requirements:")
        lines.append(service_type.intake_guidelines.strip())
    else:
        lines.append("Intake Requirements: Not specified.")
    return "\n".join(lines)


def build_service_type_list(service_types: List[ServiceType]) -> str:
    if not service_types:
        return "No active service types."
    return "\n".join(
        f"- {st.name}" + (f": {st.description.strip()}" if st.description else "")
        for st in service_types
    )

# =============================================================================
# GATEKEEPER
# =============================================================================

GATEKEEPER_SYSTEM_PROMPT = (
    "You are the Gatekeeper of a home-services lead pipeline. You validate intake "
    "requirements for new lead services and triage them. You respond only with tool calls."
)


def build_gatekeeper_prompt(
    lead: Lead,
    service: LeadService,
    notes: List[LeadNote],
    intake_context: str,
    service_types: List[ServiceType],
    photo_analysis: Optional[PhotoAnalysis] = None,
) -> str:
    return f"""You validate intake requirements.

Goal: If valid -> set stage Estimation. If invalid -> set stage Nurturing.
Constraint: Do NOT calculate price. Do NOT look for partners.

{_lead_block(lead, service)}
Service Note (raw):
{_service_note(service)}

Notes:
{build_notes_section(notes)}

Preferences (from customer portal):
{build_preferences_summary(service.customer_preferences)}

Photo Analysis (AI visual inspection):
{build_photo_summary(photo_analysis)}

Intake Requirements:
{truncate_section(intake_context, MAX_GUIDELINES_CHARS)}

Active service types:
{build_service_type_list(service_types)}

CRITICAL REQUIRED TOOL CALLS:
You MUST call BOTH SaveAnalysis AND UpdatePipelineStage.
SaveAnalysis MUST be called BEFORE UpdatePipelineStage.

Instruction:
If you find high-confidence (>=90%) errors in contact or address details, call UpdateLeadDetails.
Only update fields you are confident about. Include a short Dutch reason and your confidence.
0) Service type stability: only call UpdateLeadServiceType while the stage is "Triage" AND you are
   highly confident (>=90%) another active service type clearly matches. Missing intake information
   alone is NOT a reason to switch. Do it BEFORE UpdatePipelineStage.
1) Validate intake requirements for the selected service type.
2) Treat missing required items as critical unless the info is clearly present elsewhere.
3) FIRST call SaveAnalysis with urgencyLevel, leadQuality, recommendedAction, preferredContactChannel,
   suggestedContactMessage, a short Dutch summary and a Dutch list of missingInformation.
4) THEN call UpdatePipelineStage with stage="Estimation" (all required info present) or
   stage="Nurturing" (critical info missing), with a short Dutch reason.

Respond ONLY with tool calls.
"""

# =============================================================================
# ESTIMATOR
# =============================================================================

ESTIMATOR_SYSTEM_PROMPT = (
    "You are a Technical Estimator for a home-services company. You determine scope, "
    "estimate a price range and draft quotes. You respond only with tool calls."
)


def build_estimator_prompt(
    lead: Lead,
    service: LeadService,
    notes: List[LeadNote],
    estimation_guidelines: str,
    photo_analysis: Optional[PhotoAnalysis] = None,
    existing_quote_id: Optional[str] = None,
) -> str:
    existing_quote = (
        f"An existing draft quote ({existing_quote_id}) will be updated by DraftQuote.\n"
        if existing_quote_id else ""
    )
    return f"""Goal: Determine Scope, Estimate Price Range, Draft Quote. Keep stage as Estimation.

CRITICAL ARITHMETIC RULE:
You MUST use the Calculator tool for ALL math. NEVER perform arithmetic yourself.

CRITICAL UNIT RULE (EUROS vs CENTS):
- CalculateEstimate expects unit_price in EUROS, e.g. 7.93.
- DraftQuote expects unit_price_cents in EURO-CENTS, e.g. 793.
- For CalculateEstimate, convert price_cents to euros with Calculator(operation="divide", a=price_cents, b=100).
  DraftQuote takes price_cents unchanged.

{_lead_block(lead, service)}
Service Note (raw):
{_service_note(service)}

Notes:
{build_notes_section(notes)}

Preferences (from customer portal):
{build_preferences_summary(service.customer_preferences)}

Photo Analysis:
{build_photo_summary(photo_analysis)}

Estimation Guidelines:
{truncate_section(estimation_guidelines or "None configured.", MAX_GUIDELINES_CHARS)}

{existing_quote}Instruction:
1) Call SearchProductMaterials with several different queries (Dutch and English synonyms).
   Prefer catalog items (with "id"). high_confidence=true results can be trusted.
   Without a match, add an ad-hoc item with a realistic Dutch market price.
2) Use Calculator for quantities (ceil_divide for sheets, rolls and packs).
3) Call CalculateEstimate with raw inputs; never pre-multiply.
4) Call DraftQuote. Use price_cents as unit_price_cents and the product id as catalog_product_id.
   Use vat_rate_bps as tax_rate_bps (2100 when unknown). Add notes in Dutch.
5) Call SaveEstimation with scope (Small, Medium or Large), price_range, notes and summary in Dutch.
6) Call UpdatePipelineStage with stage="Estimation" and a Dutch reason. Do NOT move to Fulfillment.

Respond ONLY with tool calls.
"""

# =============================================================================
# DISPATCHER
# =============================================================================

DISPATCHER_SYSTEM_PROMPT = (
    "You are the Fulfillment Manager of a home-services company. You match accepted jobs "
    "to partners. You respond only with tool calls."
)


def build_dispatcher_prompt(lead: Lead, service: LeadService, radius_km: int, exclude_ids: Optional[List[str]] = None) -> str:
    exclusions = ""
    if exclude_ids:
        exclusions = (
            "\nCONTEXT: these partner IDs were already contacted or rejected: "
            f"{', '.join(exclude_ids)}. Pass them as excludePartnerIds."
        )
    return f"""Action: Find matches, create an offer, update the pipeline stage.{exclusions}

Selection strategy:
- Prefer partners with fewer rejectedOffers30d.
- Many openOffers30d is a capacity risk.
- Use distance as a tie-breaker.

Lead:
- Lead ID: {lead.id}
- Service ID: {service.id}
- Service Type: {service.service_type}
- Pipeline Stage: {service.pipeline_stage}
- Zip Code: {lead.address_zip_code}

Instruction:
1) Call FindMatchingPartners with serviceType="{service.service_type}", zipCode="{lead.address_zip_code}", radiusKm={radius_km}.
2) If matches exist, call CreatePartnerOffer for the best partner with a short Dutch jobSummaryShort
   (no address or personal data), THEN UpdatePipelineStage with stage="Fulfillment".
3) If no partners were found, call UpdatePipelineStage with stage="Manual_Intervention" and reason
   "Geen partners gevonden binnen bereik." DO NOT REJECT.

Respond ONLY with tool calls.
"""

# =============================================================================
# AUDITOR
# =============================================================================

AUDITOR_SYSTEM_PROMPT = (
    "You audit submitted visit reports and call logs. Compare them against the intake "
    "requirements. If required information is missing, call SubmitAuditResult with "
    "passed=false and list the missing items."
)

_AUDIT_OUTPUT_RULES = """OUTPUT RULES:
- If missing required info: SubmitAuditResult(passed=false, missing=[...], summary=short Dutch explanation).
- If sufficient: SubmitAuditResult(passed=true, missing=[], summary=short confirmation).
"""


def _audit_notes(notes: List[LeadNote], limit: int, max_length: int) -> str:
    return "\n".join(
        f"- [{note.type}] {note.author_email}: {sanitize_user_input(note.body, max_length)}"
        for note in notes[:limit]
    )


def build_visit_report_audit_prompt(
    service_type: str, intake_context: str, report: VisitReport, notes: List[LeadNote]
) -> str:
    recent = ""
    if notes:
        recent = f"RECENT NOTES (context):\n{_audit_notes(notes, 5, 300)}\n\n"
    return f"""You are the Audit Agent (internal reviewer).
Compare the submitted visit report against the intake requirements.
If anything required is missing or too thin (e.g. 'looks fine' without details), list what is missing.
Then call SubmitAuditResult.

SERVICE TYPE:
{service_type}

INTAKE GUIDELINES:
{intake_context}

VISIT REPORT:
- Measurements: {report.measurements or ""}
- Access difficulty: {report.access_difficulty or ""}
- Notes: {report.notes or ""}

{recent}{_AUDIT_OUTPUT_RULES}"""


def build_call_log_audit_prompt(service_type: str, intake_context: str, notes: List[LeadNote]) -> str:
    return f"""You are the Audit Agent (internal reviewer).
Audit the latest call log / notes against the intake requirements.
Then call SubmitAuditResult.

SERVICE TYPE:
{service_type}

INTAKE GUIDELINES:
{intake_context}

RECENT NOTES:
{_audit_notes(notes, 10, 400)}

{_AUDIT_OUTPUT_RULES}"""

# =============================================================================
# CALL LOGGER
# =============================================================================

CALL_LOGGER_SYSTEM_PROMPT = (
    "You are a Post-Call Processing Assistant for a home services sales team. You turn "
    "a salesperson's post-call summary into a clean Dutch note, a call outcome, status "
    "updates and appointment changes. You respond only with tool calls."
)


def build_call_logger_prompt(
    lead_id: Any,
    service_id: Any,
    user_id: Any,
    existing_appointment: str,
    summary: str,
    now: Optional[datetime] = None,
) -> str:
    current_time = (now or datetime.now()).isoformat(timespec="seconds")
    return f"""Analysis Context:
- Current Time: {current_time}
- Lead ID: {lead_id}
- Service ID: {service_id}
- Agent User ID: {user_id}
- Existing Appointment: {existing_appointment}

The agent provided this post-call summary:
{wrap_user_data(sanitize_user_input(summary, MAX_NOTE_LENGTH))}

Task:
1. Determine the call outcome and any appointment changes.
2. ALWAYS save a clean, professional Dutch call note: draft it, run it through NormalizeCallNote,
   then save the normalized version with SaveNote. Do NOT invent facts. Use 24-hour times.
3. If an appointment was scheduled, compute the exact date from Current Time and call ScheduleVisit
   (one hour unless specified).
4. If an existing appointment moves, call RescheduleVisit. Only reschedule when Existing Appointment
   is not "None"; otherwise schedule a new appointment and write "Nieuwe afspraak ingepland".
5. If the appointment is cancelled, call CancelVisit.
6. Call SetCallOutcome with a short label (Scheduled, Attempted_Contact, Bad_Lead, Needs_Rescheduling).
7. Call UpdateStatus when the outcome implies a status change:
   - booked/scheduled -> Scheduled
   - not interested/declined -> Bad_Lead
   - voicemail/no answer/callback -> Attempted_Contact
   - completed survey -> Surveyed
   - postponed -> Needs_Rescheduling
8. Call UpdatePipelineStage only if the summary explicitly indicates a stage change.

Execute the appropriate tools now.
"""
