"""
Lead Text Builder
Turns one crm.lead record into the canonical embedding document and its
vector payload. Pure functions, no I/O.
"""

import html
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from shared.config import MAX_DESCRIPTION_WORDS
from shared.schemas.lead import VectorMetadata

# Word caps for secondary free-text fields
MAX_DESIGN_WORDS = 300
MAX_NOTE_WORDS = 200

# Stage names that mean the deal was won on this CRM
WON_STAGE_PATTERNS = ("invoiced", "signed oc", "in production", "won")

PRIORITY_LABELS = {"0": "Low", "1": "Medium", "2": "High", "3": "Very High"}

# Country omitted from locations when it is the home market
HOME_COUNTRY = "Australia"

TAG_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass(frozen=True)
class EmbeddingText:
    text: str
    truncated: bool


def strip_html(value: Any) -> str:
    """Remove tags, decode entities and collapse whitespace"""
    if not value:
        return ""
    text = TAG_PATTERN.sub(" ", str(value))
    text = html.unescape(text)
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def truncate_words(text: str, max_words: int) -> tuple[str, bool]:
    """Keep the first `max_words` words; returns (text, was_truncated)"""
    words = text.split()
    if len(words) <= max_words:
        return text, False
    return " ".join(words[:max_words]) + "...", True


def relation_id(value: Any) -> Optional[int]:
    """Id of an Odoo many2one value ([id, name], id, or False)"""
    if isinstance(value, (list, tuple)) and value:
        return int(value[0])
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    return None


def relation_name(value: Any) -> str:
    """Display name of an Odoo many2one value"""
    if isinstance(value, (list, tuple)) and len(value) > 1 and value[1]:
        return str(value[1])
    return ""


def _text(value: Any) -> str:
    # Odoo returns False for empty char fields
    if value is None or value is False:
        return ""
    return str(value).strip()


def format_revenue(value: float) -> str:
    formatted = f"{value:,.2f}".rstrip("0").rstrip(".")
    return f"${formatted}"


def is_won(record: dict) -> bool:
    if record.get("won_status") == "won":
        return True
    stage = relation_name(record.get("stage_id")).lower()
    return any(pattern in stage for pattern in WON_STAGE_PATTERNS)


def is_lost(record: dict) -> bool:
    return not is_won(record) and bool(record.get("lost_reason_id"))


def status_line(record: dict) -> str:
    if is_won(record):
        return "Status: Won"
    if is_lost(record):
        reason = relation_name(record.get("lost_reason_id"))
        return f"Status: Lost - {reason}" if reason else "Status: Lost"
    return "Status: Active"


def _joined(pairs: list[tuple[str, str]], sep: str = " | ") -> str:
    return sep.join(f"{label}: {value}" for label, value in pairs if value)


def build_embedding_text(
    record: dict,
    max_description_words: int = MAX_DESCRIPTION_WORDS,
) -> EmbeddingText:
    """
    Build the embedding document for a lead.

    Sections appear in a fixed order and only when their fields are set:

        Opportunity: {name}
        Partner: {partner}
        Contact: {contact_name} | Role: {function}
        Email: {email} | Phone: {phone} | Mobile: {mobile}
        Sector: {sector}
        Specification: {specification}
        Location: {street}, {city}, {state}, {country} {zip}
        Project Address: {project_address}
        Salesperson: {user} | Team: {team}
        Lead Source: {lead_source}
        UTM: Source: {source} | Medium: {medium} | Campaign: {campaign}
        Referred by: {referred}
        Revenue: ${expected_revenue} | Stage: {stage} | Priority: {label}
        Status: Won | Lost - {reason} | Active
        Project Roles: Architect: {name} | PM: {name} | ...
        Building Owner / Design / Quote
        Description: {description}
        Notes: {address_note}

    Args:
        record: crm.lead dict as returned by search_read
        max_description_words: Word cap for the description

    Returns:
        EmbeddingText; `truncated` is set only when the description was cut
    """
    parts: list[str] = []

    # Identity
    name = _text(record.get("name"))
    if name:
        parts.append(f"Opportunity: {name}")
    partner = relation_name(record.get("partner_id")) or _text(record.get("partner_name"))
    if partner:
        parts.append(f"Partner: {partner}")

    # Contact
    contact = _joined([
        ("Contact", _text(record.get("contact_name"))),
        ("Role", _text(record.get("function"))),
    ])
    if contact:
        parts.append(contact)
    phone = _text(record.get("phone"))
    mobile = _text(record.get("mobile"))
    details = _joined([
        ("Email", _text(record.get("email_from"))),
        ("Phone", phone),
        ("Mobile", mobile if mobile != phone else ""),
    ])
    if details:
        parts.append(details)

    # Classification
    sector = _text(record.get("sector"))
    if sector:
        parts.append(f"Sector: {sector}")
    specification = relation_name(record.get("specification_id"))
    if specification:
        parts.append(f"Specification: {specification}")

    # Location
    country = relation_name(record.get("country_id"))
    location = [
        _text(record.get("street")),
        _text(record.get("city")),
        relation_name(record.get("state_id")),
        country if country != HOME_COUNTRY else "",
        _text(record.get("zip")),
    ]
    location = [p for p in location if p]
    if location:
        parts.append(f"Location: {', '.join(location)}")
    project_address = _text(record.get("project_address"))
    if project_address:
        parts.append(f"Project Address: {project_address}")

    # Assignment
    assignment = _joined([
        ("Salesperson", relation_name(record.get("user_id"))),
        ("Team", relation_name(record.get("team_id"))),
    ])
    if assignment:
        parts.append(assignment)

    # Attribution
    lead_source = relation_name(record.get("lead_source_id"))
    if lead_source:
        parts.append(f"Lead Source: {lead_source}")
    utm = _joined([
        ("Source", relation_name(record.get("source_id"))),
        ("Medium", relation_name(record.get("medium_id"))),
        ("Campaign", relation_name(record.get("campaign_id"))),
    ])
    if utm:
        parts.append(f"UTM: {utm}")
    referred = _text(record.get("referred"))
    if referred:
        parts.append(f"Referred by: {referred}")

    # Business metrics
    revenue = record.get("expected_revenue") or 0
    metrics = _joined([
        ("Revenue", format_revenue(revenue) if revenue else ""),
        ("Stage", relation_name(record.get("stage_id"))),
        ("Priority", PRIORITY_LABELS.get(str(record.get("priority") or ""), "")),
    ])
    if metrics:
        parts.append(metrics)

    # Status
    parts.append(status_line(record))

    # Project roles and custom notes
    roles = _joined([
        ("Architect", relation_name(record.get("architect_id"))),
        ("Client", relation_name(record.get("client_id"))),
        ("Estimator", relation_name(record.get("estimator_id"))),
        ("PM", relation_name(record.get("project_manager_id"))),
        ("Spec Rep", relation_name(record.get("spec_rep_id"))),
    ])
    if roles:
        parts.append(f"Project Roles: {roles}")
    building_owner = _text(record.get("x_studio_building_owner"))
    if building_owner:
        parts.append(f"Building Owner: {building_owner}")
    design = strip_html(record.get("design"))
    if design:
        parts.append(f"Design: {truncate_words(design, MAX_DESIGN_WORDS)[0]}")
    quote = _text(record.get("quote"))
    if quote:
        parts.append(f"Quote: {quote}")

    # Free text
    truncated = False
    description = strip_html(record.get("description"))
    if description:
        description, truncated = truncate_words(description, max_description_words)
        parts.append(f"Description: {description}")
    note = strip_html(record.get("address_note"))
    if note:
        parts.append(f"Notes: {truncate_words(note, MAX_NOTE_WORDS)[0]}")

    return EmbeddingText(text="\n".join(parts), truncated=truncated)


def build_metadata(
    record: dict,
    text: str,
    truncated: bool,
    sync_version: int,
    synced_at: datetime,
) -> VectorMetadata:
    """Build the vector payload for a lead; `text` must be the embedded document"""
    won = is_won(record)
    lost = is_lost(record)
    now = synced_at.strftime("%Y-%m-%d %H:%M:%S")
    return VectorMetadata(
        source_id=int(record["id"]),
        name=_text(record.get("name")) or "Untitled",
        partner_name=relation_name(record.get("partner_id")) or _text(record.get("partner_name")) or None,
        stage_id=relation_id(record.get("stage_id")) or 0,
        stage_name=relation_name(record.get("stage_id")),
        owner_id=relation_id(record.get("user_id")) or 0,
        owner_name=relation_name(record.get("user_id")),
        team_id=relation_id(record.get("team_id")),
        team_name=relation_name(record.get("team_id")) or None,
        expected_value=float(record.get("expected_revenue") or 0),
        probability=float(record.get("probability") or 0),
        is_won=won,
        is_lost=lost,
        is_active=record.get("active") is not False,
        sector=_text(record.get("sector")) or None,
        lead_source_id=relation_id(record.get("lead_source_id")),
        lead_source_name=relation_name(record.get("lead_source_id")) or None,
        specification_id=relation_id(record.get("specification_id")),
        specification_name=relation_name(record.get("specification_id")) or None,
        city=_text(record.get("city")) or None,
        region_id=relation_id(record.get("state_id")),
        region_name=relation_name(record.get("state_id")) or None,
        lost_reason_id=relation_id(record.get("lost_reason_id")) if lost else None,
        lost_reason_name=(relation_name(record.get("lost_reason_id")) or None) if lost else None,
        create_date=_text(record.get("create_date")) or now,
        write_date=_text(record.get("write_date")) or now,
        closed_date=_text(record.get("date_closed")) or None,
        sync_version=sync_version,
        last_synced=synced_at,
        truncated=truncated,
        embedding_text=text,
    )
