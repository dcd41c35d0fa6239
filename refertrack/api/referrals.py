"""
Referral endpoints - issue, list, look up, update, verify, reward, metrics, export.
"""
import csv
import io
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from refertrack.api.auth import get_current_contractor, get_current_user
from refertrack.api.dependencies import get_referral_store
from refertrack.errors import RewardDispatchError
from refertrack.models.referral import Referral
from refertrack.models.user import User, UserRole
from refertrack.schemas.api_responses import (
    CreateReferralRequest,
    MetricsResponse,
    ReferralListResponse,
    ReferralSummary,
    UpdateReferralRequest,
    VerifyReferralRequest,
)
from refertrack.services.referral_store import ReferralStore
from refertrack.utils.locks import referral_lock

logger = logging.getLogger(__name__)
router = APIRouter(tags=["referrals"])

MAX_EXPORT_ROWS = 10000


def _parse_uuid(value: str, label: str = "referral") -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError):
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")


def referral_summary(referral: Referral) -> ReferralSummary:
    return ReferralSummary(
        id=str(referral.id),
        referral_code=referral.referral_code,
        contractor_id=str(referral.contractor_id),
        referrer_id=str(referral.referrer_id),
        referred_id=str(referral.referred_id) if referral.referred_id else None,
        referred_customer_address=referral.referred_customer_address,
        status=referral.status.value,
        verified=referral.verified,
        installation_date=referral.installation_date,
        expires_at=referral.expires_at,
        reward_type=referral.reward_type,
        reward_amount=referral.reward_amount,
        reward_status=referral.reward_status,
        reward_transaction_id=referral.reward_transaction_id,
        version=referral.version,
        created_at=referral.created_at,
        updated_at=referral.updated_at,
    )


def _can_view(user: User, referral: Referral) -> bool:
    if user.role == UserRole.CONTRACTOR:
        return referral.contractor_id == user.id
    if referral.contractor_id != user.contractor_id:
        return False
    if user.role == UserRole.EXISTING_HOMEOWNER:
        return referral.referrer_id == user.id
    return referral.referred_id == user.id


async def _owned_referral(store: ReferralStore, referral_id: str, contractor: User) -> Referral:
    referral = await store.get_referral(_parse_uuid(referral_id))
    if referral.contractor_id != contractor.id:
        raise HTTPException(status_code=404, detail="Referral not found")
    return referral


# === LIST / CREATE ===

@router.get("/api/v1/referrals", response_model=ReferralListResponse)
async def list_referrals(
    store: ReferralStore = Depends(get_referral_store),
    user: User = Depends(get_current_user),
):
    """Contractors see every referral they issued; homeowners see their own."""
    if user.role == UserRole.CONTRACTOR:
        referrals = await store.get_referrals_by_contractor(user.id)
    elif user.role == UserRole.EXISTING_HOMEOWNER:
        referrals = await store.get_referrals_by_referrer(user.id)
    elif user.role == UserRole.REFERRED_HOMEOWNER:
        referrals = [
            r for r in await store.get_referrals_by_contractor(user.contractor_id)
            if r.referred_id == user.id
        ]
    else:
        raise HTTPException(status_code=403, detail="Unknown role")

    return ReferralListResponse(
        referrals=[referral_summary(r) for r in referrals],
        total=len(referrals),
    )


@router.post("/api/v1/referrals", response_model=ReferralSummary, status_code=201)
async def create_referral(
    payload: CreateReferralRequest,
    store: ReferralStore = Depends(get_referral_store),
    user: User = Depends(get_current_user),
):
    """
    Issue a referral code. Contractors issue on behalf of one of their
    homeowners (referrer_id); homeowners issue for themselves.
    """
    if user.role == UserRole.CONTRACTOR:
        if not payload.referrer_id:
            raise HTTPException(status_code=400, detail="referrer_id is required")
        contractor_id = user.id
        referrer_id = _parse_uuid(payload.referrer_id, "referrer")
    elif user.role == UserRole.EXISTING_HOMEOWNER:
        if payload.referrer_id and _parse_uuid(payload.referrer_id, "referrer") != user.id:
            raise HTTPException(status_code=403, detail="Homeowners can only issue their own codes")
        contractor_id = user.contractor_id
        referrer_id = user.id
    elif user.role == UserRole.REFERRED_HOMEOWNER:
        raise HTTPException(status_code=403, detail="Referred homeowners cannot issue referrals")
    else:
        raise HTTPException(status_code=403, detail="Unknown role")

    notify = payload.notify.model_dump(exclude_none=True) if payload.notify else None
    referral = await store.create_referral(
        contractor_id,
        referrer_id,
        payload.referred_address,
        reward_type=payload.reward_type,
        reward_amount=payload.reward_amount,
        notify=notify,
    )
    return referral_summary(referral)


# === CONTRACTOR VIEWS ===

@router.get("/api/v1/referrals/metrics", response_model=MetricsResponse)
async def get_metrics(
    refresh: bool = Query(default=False),
    store: ReferralStore = Depends(get_referral_store),
    contractor: User = Depends(get_current_contractor),
):
    """Conversion snapshot for the authenticated contractor."""
    metric = await store.get_metrics(contractor.id, refresh=refresh)
    return MetricsResponse(
        contractor_id=str(metric.contractor_id),
        total_referrals=metric.total_referrals,
        converted_referrals=metric.converted_referrals,
        conversion_rate=metric.conversion_rate,
        average_time_to_conversion=metric.average_time_to_conversion,
        updated_at=metric.updated_at,
    )


@router.get("/api/v1/referrals/export")
async def export_referrals_csv(
    store: ReferralStore = Depends(get_referral_store),
    contractor: User = Depends(get_current_contractor),
):
    """Export referrals as CSV (capped at 10,000 rows for safety)."""
    referrals = (await store.get_referrals_by_contractor(contractor.id))[:MAX_EXPORT_ROWS]

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "id", "referral_code", "referrer_id", "referred_customer_address",
        "status", "verified", "installation_date", "reward_type",
        "reward_amount", "reward_status", "created_at",
    ])

    for referral in referrals:
        writer.writerow([
            str(referral.id),
            referral.referral_code,
            str(referral.referrer_id),
            referral.referred_customer_address or "",
            referral.status.value,
            referral.verified,
            referral.installation_date.isoformat() if referral.installation_date else "",
            referral.reward_type,
            f"{referral.reward_amount:.2f}",
            referral.reward_status,
            referral.created_at.isoformat() if referral.created_at else "",
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=referrals_export.csv"},
    )


@router.post("/api/v1/referrals/verify", response_model=ReferralSummary)
async def verify_referral(
    payload: VerifyReferralRequest,
    store: ReferralStore = Depends(get_referral_store),
    contractor: User = Depends(get_current_contractor),
):
    """Record that a new customer used a code. Serialized per code."""
    referral = await store.get_referral_by_code(payload.code)
    if referral is None or referral.contractor_id != contractor.id:
        raise HTTPException(status_code=404, detail="Referral code not found")

    async with referral_lock(referral.referral_code):
        referral = await store.verify_referral(
            payload.code,
            payload.referred_address,
            payload.installation_date,
            verified=payload.verified,
            referred_email=payload.referred_email,
            referred_name=payload.referred_name,
            referred_phone=payload.referred_phone,
        )
    return referral_summary(referral)


@router.get("/api/v1/referrals/code/{code}", response_model=ReferralSummary)
async def get_referral_by_code(
    code: str,
    unverified_only: bool = Query(default=False),
    store: ReferralStore = Depends(get_referral_store),
    user: User = Depends(get_current_user),
):
    """
    Look up a code. Contractors see codes they issued, referrers their own
    codes, referred homeowners the code that was used for them.
    """
    referral = await store.get_referral_by_code(code, unverified_only=unverified_only)
    if referral is None or not _can_view(user, referral):
        raise HTTPException(status_code=404, detail="Referral code not found")
    return referral_summary(referral)


@router.patch("/api/v1/referrals/{referral_id}", response_model=ReferralSummary)
async def update_referral(
    referral_id: str,
    payload: UpdateReferralRequest,
    store: ReferralStore = Depends(get_referral_store),
    contractor: User = Depends(get_current_contractor),
):
    """Partial update. Status is derived, so it is not accepted here."""
    referral = await _owned_referral(store, referral_id, contractor)
    patch = payload.model_dump(exclude_unset=True)
    if patch.get("referred_id") is not None:
        patch["referred_id"] = _parse_uuid(patch["referred_id"], "referred user")
    updated = await store.update_referral(referral.id, patch)
    return referral_summary(updated)


@router.post("/api/v1/referrals/{referral_id}/reward", response_model=ReferralSummary)
async def issue_reward(
    referral_id: str,
    store: ReferralStore = Depends(get_referral_store),
    contractor: User = Depends(get_current_contractor),
):
    """Pay the referrer. Safe to retry: payouts are keyed by referral id."""
    referral = await _owned_referral(store, referral_id, contractor)
    try:
        updated = await store.issue_reward(referral.id)
    except RewardDispatchError:
        # Keep reward_status=failed so the lifecycle worker retries it
        await store.repository.commit()
        raise
    return referral_summary(updated)
