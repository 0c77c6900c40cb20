"""Provider to canonical entity mappers.

Maps raw provider payloads to canonical entities:
- JobNimbus Contact → ContactRecord
- JobNimbus Job → PropertyRecord / LeadRecord / ClaimRecord
- AccuLynx Contact → ContactRecord
- AccuLynx Job → PropertyRecord / ClaimRecord
- AccuLynx Lead → LeadRecord

Mappers are pure: the same payload always maps to the same entity. A mapper
returns None to skip a record on purpose (deleted upstream, a job with no site
address, a job that is not a claim) and raises RecordMappingError when
identity fields are missing.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from app.models.migration import EntityKind, MigrationSource
from app.services.migrations.entities import (
    CanonicalEntity,
    ClaimRecord,
    ContactRecord,
    LeadRecord,
    PropertyRecord,
    ProviderRecord,
)
from app.services.migrations.errors import RecordMappingError

Mapper = Callable[[ProviderRecord, str], CanonicalEntity | None]


def _clean(value: Any, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, (str, int, float)):
        return None
    text = " ".join(str(value).split())
    if not text:
        return None
    return text[:max_length] if max_length else text


def _normalize_email(value: Any) -> str | None:
    email = _clean(value, 255)
    return email.lower() if email else None


def _normalize_phone(value: Any) -> str | None:
    """Keep digits and a leading plus; take the first of comma separated numbers."""
    raw = _clean(value)
    if not raw:
        return None
    first = raw.split(",")[0].strip()
    digits = re.sub(r"\D", "", first)
    if not digits:
        return None
    return (f"+{digits}" if first.startswith("+") else digits)[:40]


def _epoch_to_iso(value: Any) -> str | None:
    """JobNimbus timestamps are epoch seconds."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=UTC).isoformat()
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _iso_to_utc(value: Any) -> str | None:
    """AccuLynx timestamps are ISO-8601 strings, sometimes with a Z suffix."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).isoformat()


def _date_only(value: str | None) -> str | None:
    return value[:10] if value else None


def _full_name(first: str | None, last: str | None) -> str:
    return f"{first or ''} {last or ''}".strip()


def _nested_id(value: Any) -> str | None:
    if isinstance(value, dict):
        return _clean(value.get("id") or value.get("jnid"))
    return _clean(value)


# -----------------------------------------------------------------------------
# Status Mappings
# -----------------------------------------------------------------------------

JOB_STATUS_MAP = {
    "lead": "NEW",
    "new": "NEW",
    "open": "IN_PROGRESS",
    "in progress": "IN_PROGRESS",
    "working": "IN_PROGRESS",
    "pending": "PENDING",
    "closed": "COMPLETED",
    "won": "COMPLETED",
    "completed": "COMPLETED",
    "lost": "CANCELLED",
    "cancelled": "CANCELLED",
}


def normalize_status(value: Any) -> str:
    key = (_clean(value) or "").lower()
    return JOB_STATUS_MAP.get(key, "NEW")


MIN_NAME_LENGTH = 2


# -----------------------------------------------------------------------------
# JobNimbus
# -----------------------------------------------------------------------------


def _jobnimbus_deleted(doc: dict[str, Any]) -> bool:
    return doc.get("is_active") is False or bool(doc.get("date_deleted"))


def _jobnimbus_contact_id(doc: dict[str, Any]) -> str | None:
    primary = _nested_id(doc.get("primary"))
    if primary:
        return primary
    for related in doc.get("related") or []:
        if isinstance(related, dict) and related.get("type") == "contact":
            return _nested_id(related)
    return None


def map_jobnimbus_contact(record: ProviderRecord, org_id: str) -> ContactRecord | None:
    """Map JobNimbus Contact to ContactRecord.

    JobNimbus Contact fields:
    - jnid: Contact ID
    - first_name, last_name, display_name
    - company
    - email
    - home_phone, work_phone, mobile_phone
    - is_active, date_created (epoch seconds)
    """
    doc = record.payload
    if _jobnimbus_deleted(doc):
        return None

    first_name = _clean(doc.get("first_name"), 80)
    last_name = _clean(doc.get("last_name"), 80)
    if not first_name and not last_name and doc.get("display_name"):
        display = _clean(doc.get("display_name")) or ""
        first_name, _, last_name = display.partition(" ")
        first_name = first_name[:80] or None
        last_name = last_name[:80] or None
    company = _clean(doc.get("company"), 160)

    if len(_full_name(first_name, last_name)) < MIN_NAME_LENGTH and not company:
        raise RecordMappingError("Missing or invalid contact name", field="name")

    return ContactRecord(
        org_id=org_id,
        source=record.source,
        external_id=record.external_id,
        first_name=first_name,
        last_name=last_name,
        company=company,
        email=_normalize_email(doc.get("email")),
        phone=_normalize_phone(doc.get("home_phone") or doc.get("work_phone")),
        mobile_phone=_normalize_phone(doc.get("mobile_phone")),
        source_created_at=_epoch_to_iso(doc.get("date_created")),
    )


def map_jobnimbus_property(record: ProviderRecord, org_id: str) -> PropertyRecord | None:
    """Map the site address of a JobNimbus Job to PropertyRecord.

    Jobs without a street address have no property and are skipped.

    JobNimbus Job address fields:
    - address_line1, address_line2
    - city, state_text, zip, country_name
    - primary: {id} linked contact
    """
    doc = record.payload
    if _jobnimbus_deleted(doc):
        return None

    address_line1 = _clean(doc.get("address_line1"), 200)
    if not address_line1:
        return None

    return PropertyRecord(
        org_id=org_id,
        source=record.source,
        external_id=record.external_id,
        address_line1=address_line1,
        address_line2=_clean(doc.get("address_line2"), 200),
        city=_clean(doc.get("city"), 120),
        state=_clean(doc.get("state_text"), 80),
        postal_code=_clean(doc.get("zip"), 20),
        country=_clean(doc.get("country_name"), 80),
        contact_external_id=_jobnimbus_contact_id(doc),
        source_created_at=_epoch_to_iso(doc.get("date_created")),
    )


def map_jobnimbus_lead(record: ProviderRecord, org_id: str) -> LeadRecord | None:
    """Map JobNimbus Job to LeadRecord.

    JobNimbus Job fields:
    - jnid, name, number
    - status_name: workflow status (Lead, Open, Won, Lost, ...)
    - source_name: lead source
    - description
    """
    doc = record.payload
    if _jobnimbus_deleted(doc):
        return None

    contact_external_id = _jobnimbus_contact_id(doc)
    title = _clean(doc.get("name"), 200) or _clean(doc.get("number"), 200)
    if not title:
        primary = doc.get("primary") if isinstance(doc.get("primary"), dict) else {}
        title = _clean(primary.get("name"), 200)
    if not title and not contact_external_id:
        raise RecordMappingError("Job has no name and no contact", field="name")

    return LeadRecord(
        org_id=org_id,
        source=record.source,
        external_id=record.external_id,
        title=title or f"Job {record.external_id}",
        status=normalize_status(doc.get("status_name")),
        lead_source=_clean(doc.get("source_name"), 120),
        description=_clean(doc.get("description")),
        contact_external_id=contact_external_id,
        property_external_id=record.external_id if _clean(doc.get("address_line1")) else None,
        source_created_at=_epoch_to_iso(doc.get("date_created")),
    )


def map_jobnimbus_claim(record: ProviderRecord, org_id: str) -> ClaimRecord | None:
    """Map the insurance fields of a JobNimbus Job to ClaimRecord.

    Jobs without any insurance data are not claims and are skipped.
    """
    doc = record.payload
    if _jobnimbus_deleted(doc):
        return None

    claim_number = _clean(doc.get("insurance_claim_number"), 80)
    carrier = _clean(doc.get("insurance_company"), 160)
    policy_number = _clean(doc.get("insurance_policy_number"), 80)
    if not (claim_number or carrier or policy_number):
        return None
    if not claim_number:
        raise RecordMappingError("Insurance job has no claim number", field="insurance_claim_number")

    return ClaimRecord(
        org_id=org_id,
        source=record.source,
        external_id=record.external_id,
        claim_number=claim_number,
        carrier=carrier,
        policy_number=policy_number,
        date_of_loss=_date_only(_epoch_to_iso(doc.get("date_of_loss"))),
        status=normalize_status(doc.get("status_name")),
        contact_external_id=_jobnimbus_contact_id(doc),
        property_external_id=record.external_id if _clean(doc.get("address_line1")) else None,
        source_created_at=_epoch_to_iso(doc.get("date_created")),
    )


# -----------------------------------------------------------------------------
# AccuLynx
# -----------------------------------------------------------------------------


def _acculynx_deleted(doc: dict[str, Any]) -> bool:
    return bool(doc.get("isDeleted")) or doc.get("isActive") is False


def _acculynx_primary(entries: Any, value_key: str) -> Any:
    if not isinstance(entries, list):
        return None
    candidates = [e for e in entries if isinstance(e, dict)]
    for entry in candidates:
        if entry.get("isPrimary"):
            return entry.get(value_key)
    return candidates[0].get(value_key) if candidates else None


def _acculynx_phone(doc: dict[str, Any], mobile: bool) -> str | None:
    numbers = [n for n in doc.get("phoneNumbers") or [] if isinstance(n, dict)]
    wanted = [n for n in numbers if (str(n.get("type") or "").lower() == "mobile") == mobile]
    value = _acculynx_primary(wanted, "number")
    if value is None and not mobile:
        value = doc.get("phone")
    return _normalize_phone(value)


def _acculynx_state(value: Any) -> str | None:
    if isinstance(value, dict):
        return _clean(value.get("abbreviation") or value.get("name"), 80)
    return _clean(value, 80)


def map_acculynx_contact(record: ProviderRecord, org_id: str) -> ContactRecord | None:
    """Map AccuLynx Contact to ContactRecord.

    AccuLynx Contact fields:
    - id: Contact ID
    - firstName, lastName, companyName
    - emailAddresses: [{address, isPrimary}] (or email)
    - phoneNumbers: [{number, type, isPrimary}] (or phone)
    - createdDate (ISO-8601), isDeleted
    """
    doc = record.payload
    if _acculynx_deleted(doc):
        return None

    first_name = _clean(doc.get("firstName"), 80)
    last_name = _clean(doc.get("lastName"), 80)
    company = _clean(doc.get("companyName"), 160)
    if len(_full_name(first_name, last_name)) < MIN_NAME_LENGTH and not company:
        raise RecordMappingError("Missing or invalid contact name", field="name")

    email = _acculynx_primary(doc.get("emailAddresses"), "address") or doc.get("email")

    return ContactRecord(
        org_id=org_id,
        source=record.source,
        external_id=record.external_id,
        first_name=first_name,
        last_name=last_name,
        company=company,
        email=_normalize_email(email),
        phone=_acculynx_phone(doc, mobile=False),
        mobile_phone=_acculynx_phone(doc, mobile=True),
        source_created_at=_iso_to_utc(doc.get("createdDate")),
    )


def map_acculynx_property(record: ProviderRecord, org_id: str) -> PropertyRecord | None:
    """Map the location address of an AccuLynx Job to PropertyRecord.

    Jobs without a street address have no property and are skipped.

    AccuLynx Job location fields:
    - locationAddress: {street1, street2, city, state, zipCode, country}
    - primaryContact: {id}
    """
    doc = record.payload
    if _acculynx_deleted(doc):
        return None

    address = doc.get("locationAddress") if isinstance(doc.get("locationAddress"), dict) else {}
    street = _clean(address.get("street1"), 200)
    if not street:
        return None

    return PropertyRecord(
        org_id=org_id,
        source=record.source,
        external_id=record.external_id,
        address_line1=street,
        address_line2=_clean(address.get("street2"), 200),
        city=_clean(address.get("city"), 120),
        state=_acculynx_state(address.get("state")),
        postal_code=_clean(address.get("zipCode"), 20),
        country=_clean(address.get("country"), 80),
        contact_external_id=_nested_id(doc.get("primaryContact")),
        source_created_at=_iso_to_utc(doc.get("createdDate")),
    )


def map_acculynx_lead(record: ProviderRecord, org_id: str) -> LeadRecord | None:
    """Map AccuLynx Lead to LeadRecord.

    AccuLynx Lead fields:
    - id, name (or firstName/lastName)
    - contact: {id}, job: {id}
    - status, leadSource, notes, createdDate
    """
    doc = record.payload
    if _acculynx_deleted(doc):
        return None

    contact_external_id = _nested_id(doc.get("contact"))
    title = _clean(doc.get("name"), 200) or _clean(
        _full_name(_clean(doc.get("firstName")), _clean(doc.get("lastName"))), 200
    )
    if not title and not contact_external_id:
        raise RecordMappingError("Lead has no name and no contact", field="name")

    return LeadRecord(
        org_id=org_id,
        source=record.source,
        external_id=record.external_id,
        title=title or f"Lead {record.external_id}",
        status=normalize_status(doc.get("status")),
        lead_source=_clean(doc.get("leadSource"), 120),
        description=_clean(doc.get("notes")),
        contact_external_id=contact_external_id,
        property_external_id=_nested_id(doc.get("job")),
        source_created_at=_iso_to_utc(doc.get("createdDate")),
    )


def map_acculynx_claim(record: ProviderRecord, org_id: str) -> ClaimRecord | None:
    """Map the insurance block of an AccuLynx Job to ClaimRecord.

    AccuLynx Job insurance fields:
    - insurance: {company, claimNumber, policyNumber, dateOfLoss}
    - currentMilestone: workflow milestone
    """
    doc = record.payload
    if _acculynx_deleted(doc):
        return None

    insurance = doc.get("insurance") if isinstance(doc.get("insurance"), dict) else {}
    claim_number = _clean(insurance.get("claimNumber"), 80)
    carrier = _clean(insurance.get("company"), 160)
    policy_number = _clean(insurance.get("policyNumber"), 80)
    if not (claim_number or carrier or policy_number):
        return None
    if not claim_number:
        raise RecordMappingError("Insurance job has no claim number", field="insurance.claimNumber")

    has_address = isinstance(doc.get("locationAddress"), dict) and _clean(doc["locationAddress"].get("street1"))

    return ClaimRecord(
        org_id=org_id,
        source=record.source,
        external_id=record.external_id,
        claim_number=claim_number,
        carrier=carrier,
        policy_number=policy_number,
        date_of_loss=_date_only(_iso_to_utc(insurance.get("dateOfLoss"))),
        status=normalize_status(doc.get("currentMilestone") or doc.get("status")),
        contact_external_id=_nested_id(doc.get("primaryContact")),
        property_external_id=record.external_id if has_address else None,
        source_created_at=_iso_to_utc(doc.get("createdDate")),
    )


MAPPERS: dict[tuple[MigrationSource, EntityKind], Mapper] = {
    (MigrationSource.jobnimbus, EntityKind.contacts): map_jobnimbus_contact,
    (MigrationSource.jobnimbus, EntityKind.properties): map_jobnimbus_property,
    (MigrationSource.jobnimbus, EntityKind.leads): map_jobnimbus_lead,
    (MigrationSource.jobnimbus, EntityKind.claims): map_jobnimbus_claim,
    (MigrationSource.acculynx, EntityKind.contacts): map_acculynx_contact,
    (MigrationSource.acculynx, EntityKind.properties): map_acculynx_property,
    (MigrationSource.acculynx, EntityKind.leads): map_acculynx_lead,
    (MigrationSource.acculynx, EntityKind.claims): map_acculynx_claim,
}


def map_record(record: ProviderRecord, org_id: str) -> CanonicalEntity | None:
    mapper = MAPPERS.get((record.source, record.kind))
    if mapper is None:
        raise RecordMappingError(f"No mapper for {record.source.value} {record.kind.value}")
    return mapper(record, org_id)
