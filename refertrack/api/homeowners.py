"""
Homeowner endpoints - CSV import and listing for a contractor's customers.
"""
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from refertrack.api.auth import get_current_contractor
from refertrack.api.dependencies import get_repository
from refertrack.models.user import User, UserRole
from refertrack.schemas.api_responses import HomeownerImportResponse, HomeownerSummary
from refertrack.services.homeowner_import import import_homeowners, parse_homeowner_csv
from refertrack.services.notifications import NotificationDispatcher
from refertrack.storage.base import ReferralRepository
from refertrack.utils.phone import mask_phone

logger = logging.getLogger(__name__)
router = APIRouter(tags=["homeowners"])

MAX_UPLOAD_BYTES = 2 * 1024 * 1024  # 2MB


def homeowner_summary(user: User) -> HomeownerSummary:
    return HomeownerSummary(
        id=str(user.id),
        name=user.name,
        email=user.email,
        phone_masked=mask_phone(user.phone),
        address=user.address,
        referral_code=user.referral_code,
        registered=bool(user.password_hash),
        created_at=user.created_at,
    )


@router.post("/api/v1/homeowners/import", response_model=HomeownerImportResponse)
async def import_homeowners_csv(
    file: UploadFile = File(...),
    repository: ReferralRepository = Depends(get_repository),
    contractor: User = Depends(get_current_contractor),
):
    """Bulk-create existing homeowners from a CSV (name, email, address[, phone])."""
    raw = await file.read()
    if len(raw) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="CSV file too large (max 2MB)")
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")

    rows = parse_homeowner_csv(text)
    result = await import_homeowners(repository, contractor, rows, NotificationDispatcher())

    return HomeownerImportResponse(
        created=len(result["created"]),
        skipped=result["skipped"],
        notified=result["notified"],
        homeowners=[homeowner_summary(u) for u in result["created"]],
    )


@router.get("/api/v1/homeowners", response_model=list[HomeownerSummary])
async def list_homeowners(
    repository: ReferralRepository = Depends(get_repository),
    contractor: User = Depends(get_current_contractor),
):
    """The contractor's existing homeowners (potential referrers)."""
    homeowners = await repository.list_users(contractor.id, role=UserRole.EXISTING_HOMEOWNER)
    return [homeowner_summary(u) for u in homeowners]
