"""
Homeowner CSV import - contractors bulk-load their existing customers.

Expected header (case-insensitive, any order): name, email, address[, phone]
Each imported homeowner gets a personal referral code and a welcome email
with a registration link. Emails already registered are skipped.
"""
import csv
import io
import logging
import uuid
from typing import Optional

from refertrack.config import Settings, get_settings
from refertrack.errors import ReferralValidationError
from refertrack.models.analytics_event import AnalyticsEvent
from refertrack.models.user import User, UserRole
from refertrack.services.code_generator import issue_unique_code
from refertrack.storage.base import ReferralRepository
from refertrack.utils.email_validation import is_valid_email_format, normalize_email
from refertrack.utils.phone import normalize_phone_e164
from refertrack.utils.timezone import utc_now

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = ("name", "email", "address")
MAX_IMPORT_ROWS = 5000


def parse_homeowner_csv(text: str) -> list[dict]:
    """
    Parse and validate an import file.

    Returns: [{"name", "email", "address", "phone"}] with phone None when absent.
    Raises ReferralValidationError naming the first bad row (header is row 1).
    """
    text = (text or "").lstrip("\ufeff").strip()
    if not text:
        raise ReferralValidationError("CSV file is empty")

    reader = csv.reader(io.StringIO(text))
    headers = [h.strip().lower() for h in next(reader)]
    missing = [h for h in REQUIRED_HEADERS if h not in headers]
    if missing:
        raise ReferralValidationError(f"Missing required headers: {', '.join(missing)}")

    rows = []
    seen_emails = set()
    for row_number, values in enumerate(reader, start=2):
        if not any(v.strip() for v in values):
            continue
        record = {h: (values[i].strip() if i < len(values) else "") for i, h in enumerate(headers)}

        for field in REQUIRED_HEADERS:
            if not record.get(field):
                raise ReferralValidationError(f"Error in row {row_number}: {field} is required")
        email = normalize_email(record["email"])
        if not is_valid_email_format(email):
            raise ReferralValidationError(f"Error in row {row_number}: invalid email {record['email']!r}")
        if email in seen_emails:
            raise ReferralValidationError(f"Error in row {row_number}: duplicate email {email}")
        seen_emails.add(email)

        phone = None
        if record.get("phone"):
            phone = normalize_phone_e164(record["phone"])
            if phone is None:
                raise ReferralValidationError(
                    f"Error in row {row_number}: invalid phone {record['phone']!r}"
                )

        rows.append({
            "name": record["name"],
            "email": email,
            "address": " ".join(record["address"].split()),
            "phone": phone,
        })
        if len(rows) > MAX_IMPORT_ROWS:
            raise ReferralValidationError(f"Import is limited to {MAX_IMPORT_ROWS} rows")

    return rows


async def import_homeowners(
    repository: ReferralRepository,
    contractor: User,
    rows: list[dict],
    notifier=None,
    *,
    settings: Optional[Settings] = None,
) -> dict:
    """
    Create existing-homeowner accounts for a contractor.

    Returns:
        {"created": list[User], "skipped": list[str], "notified": int}
    """
    if contractor.role != UserRole.CONTRACTOR:
        raise ReferralValidationError("Only contractors can import homeowners")
    settings = settings or get_settings()

    created: list[User] = []
    skipped: list[str] = []
    notified = 0

    for row in rows:
        if await repository.get_user_by_email(row["email"]) is not None:
            skipped.append(row["email"])
            continue

        code = await issue_unique_code(
            repository.code_exists,
            max_attempts=settings.referral_code_max_attempts,
            length=settings.referral_code_length,
            contractor_name=(
                contractor.display_name if settings.referral_code_policy == "branded" else None
            ),
        )
        now = utc_now()
        user = await repository.add_user(User(
            id=uuid.uuid4(),
            role=UserRole.EXISTING_HOMEOWNER,
            email=row["email"],
            name=row["name"],
            phone=row.get("phone"),
            address=row["address"],
            referral_code=code,
            contractor_id=contractor.id,
            password_hash=None,
            is_active=True,
            created_at=now,
            updated_at=now,
        ))
        created.append(user)

        if notifier is not None:
            result = await notifier.welcome_homeowner(user, contractor.display_name)
            if not result.get("error"):
                notified += 1

    if created:
        await repository.add_event(AnalyticsEvent(
            id=uuid.uuid4(),
            contractor_id=contractor.id,
            referral_id=None,
            event_type="homeowner_imported",
            event_data={"created": len(created), "skipped": len(skipped)},
            created_at=utc_now(),
        ))

    logger.info(
        "Homeowner import: created=%d skipped=%d notified=%d",
        len(created), len(skipped), notified,
        extra={"contractor_id": str(contractor.id)},
    )
    return {"created": created, "skipped": skipped, "notified": notified}
