"""
Referral store - the referral program's write path.

Every mutation goes through here:
1. Validate shape, then roles and affiliation (nothing written on failure)
2. Persist through the injected ReferralRepository (version-guarded updates)
3. Derive status from installation date + verified flag
4. Record an analytics event
5. Recompute the contractor's metric snapshot when status may have moved
6. Pay the reward when a referral completes (auto rewards only)

Notification and payout vendors are collaborators. A failed email never
fails a referral; a failed payout is recorded on the referral and re-raised
without touching its status.
"""
import logging
import uuid
from datetime import timedelta
from typing import Optional

from refertrack.config import Settings, get_settings
from refertrack.errors import (
    AddressAlreadyResolvedError,
    CodeCollisionError,
    CodeGenerationExhausted,
    DependencyError,
    DuplicateAddressError,
    InvalidContractorError,
    InvalidReferrerError,
    ReferralAlreadyVerifiedError,
    ReferralExpiredError,
    ReferralNotFoundError,
    ReferralValidationError,
    RewardDispatchError,
    RewardNotEligibleError,
    StaleWriteError,
)
from refertrack.models.analytics_event import AnalyticsEvent
from refertrack.models.referral import REWARD_TYPES, Referral, ReferralStatus, RewardStatus
from refertrack.models.referral_metric import ReferralMetric
from refertrack.models.user import User, UserRole
from refertrack.services import metrics
from refertrack.services.code_generator import candidate_codes, is_valid_code, normalize_code
from refertrack.services.lifecycle import compute_status, is_expired, is_status_stale
from refertrack.storage.base import ReferralRepository
from refertrack.utils.phone import normalize_phone_e164
from refertrack.utils.timezone import calendar_date, parse_datetime, utc_now, utc_today

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "referred_customer_address",
    "installation_date",
    "verified",
    "referred_id",
    "expected_version",
})

MAX_ADDRESS_LENGTH = 500


def _clean_address(address: Optional[str]) -> Optional[str]:
    """Collapse whitespace; blank means no address."""
    if address is None:
        return None
    if not isinstance(address, str):
        raise ReferralValidationError("Address must be a string")
    cleaned = " ".join(address.split())
    if not cleaned:
        return None
    if len(cleaned) > MAX_ADDRESS_LENGTH:
        raise ReferralValidationError(f"Address exceeds {MAX_ADDRESS_LENGTH} characters")
    return cleaned


def _parse_installation_date(value):
    try:
        return parse_datetime(value)
    except (TypeError, ValueError) as e:
        raise ReferralValidationError(f"Invalid installation date: {value!r}") from e


def _event_value(value):
    """JSON-safe rendering for event_data."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, ReferralStatus):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class ReferralStore:
    """Referral operations over a persistence backend."""

    def __init__(
        self,
        repository: ReferralRepository,
        *,
        settings: Optional[Settings] = None,
        notifier=None,
        reward_dispatcher=None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.notifier = notifier
        self.reward_dispatcher = reward_dispatcher

    # --- Creation ---

    async def create_referral(
        self,
        contractor_id: uuid.UUID,
        referrer_id: uuid.UUID,
        referred_address: Optional[str] = None,
        *,
        reward_type: Optional[str] = None,
        reward_amount: Optional[float] = None,
        notify: Optional[dict] = None,
    ) -> Referral:
        """
        Issue a new referral code for a homeowner of this contractor.

        Raises:
            ReferralValidationError: bad reward type/amount or address
            InvalidContractorError / InvalidReferrerError: role or affiliation mismatch
            DuplicateAddressError: address already referred to this contractor
            CodeGenerationExhausted: every code attempt collided
        """
        reward_type = reward_type or self.settings.default_reward_type
        if reward_type not in REWARD_TYPES:
            raise ReferralValidationError(
                f"reward_type must be one of {', '.join(REWARD_TYPES)}"
            )
        reward_amount = self.settings.default_reward_amount if reward_amount is None else reward_amount
        if reward_amount <= 0:
            raise ReferralValidationError("reward_amount must be positive")
        address = _clean_address(referred_address)

        contractor = await self._require_contractor(contractor_id)
        await self._require_referrer(referrer_id, contractor.id)
        if address is not None:
            await self._ensure_address_free(contractor.id, address)

        contractor_name = (
            contractor.display_name if self.settings.referral_code_policy == "branded" else None
        )
        max_attempts = self.settings.referral_code_max_attempts
        referral = None
        for attempt, code in enumerate(
            candidate_codes(max_attempts, self.settings.referral_code_length, contractor_name),
            start=1,
        ):
            if await self.repository.code_exists(code):
                logger.info("Referral code collision on attempt %d/%d", attempt, max_attempts)
                continue

            now = utc_now()
            candidate = Referral(
                id=uuid.uuid4(),
                contractor_id=contractor.id,
                referrer_id=referrer_id,
                referred_id=None,
                referral_code=code,
                referred_customer_address=address,
                status=ReferralStatus.PENDING,
                verified=False,
                installation_date=None,
                expires_at=now + timedelta(days=self.settings.referral_code_ttl_days),
                reward_type=reward_type,
                reward_amount=float(reward_amount),
                reward_status=RewardStatus.PENDING.value,
                reward_transaction_id=None,
                reward_error=None,
                version=1,
                created_at=now,
                updated_at=now,
            )
            try:
                referral = await self.repository.insert_referral(candidate)
            except CodeCollisionError:
                # Lost the race between pre-check and insert; costs an attempt
                logger.info("Referral code taken at insert on attempt %d/%d", attempt, max_attempts)
                continue
            break

        if referral is None:
            raise CodeGenerationExhausted(
                f"Failed to generate a unique referral code after {max_attempts} attempts"
            )

        logger.info(
            "Referral created: code=%s", referral.referral_code,
            extra={"referral_id": str(referral.id), "contractor_id": str(contractor.id)},
        )
        await self._record_event(referral, "referral_created", {
            "referral_code": referral.referral_code,
            "referrer_id": str(referrer_id),
            "reward_type": reward_type,
            "reward_amount": float(reward_amount),
        })
        await metrics.recompute(self.repository, contractor.id)

        if notify:
            await self.send_code(referral, notify, "referral_issued", contractor=contractor)
        return referral

    # --- Lookups ---

    async def get_referrals_by_contractor(self, contractor_id: uuid.UUID) -> list[Referral]:
        return await self.repository.list_referrals(contractor_id=contractor_id)

    async def get_referrals_by_referrer(self, referrer_id: uuid.UUID) -> list[Referral]:
        return await self.repository.list_referrals(referrer_id=referrer_id)

    async def get_referral(self, referral_id: uuid.UUID) -> Referral:
        referral = await self.repository.get_referral(referral_id)
        if referral is None:
            raise ReferralNotFoundError(f"Referral {referral_id} not found")
        return referral

    async def get_referral_by_code(
        self,
        code: str,
        *,
        unverified_only: bool = False,
    ) -> Optional[Referral]:
        """Exact match on the normalized code. Malformed codes match nothing."""
        normalized = normalize_code(code)
        if not is_valid_code(normalized):
            return None
        referral = await self.repository.get_referral_by_code(normalized)
        if referral is not None and unverified_only and referral.verified:
            return None
        return referral

    # --- Updates ---

    async def update_referral(self, referral_id: uuid.UUID, patch: dict) -> Referral:
        """
        Apply a partial update. Status is recomputed, never patched.

        Raises:
            ReferralValidationError: unknown or malformed patch fields, or
                verified without an installation_date
            ReferralNotFoundError: unknown id
            AddressAlreadyResolvedError: re-pointing a resolved address
            DuplicateAddressError: address held by another referral of the contractor
            StaleWriteError: the row changed since expected_version
        """
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ReferralValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}"
            )

        referral = await self.get_referral(referral_id)
        expected_version = patch.get("expected_version", referral.version)
        if not isinstance(expected_version, int) or isinstance(expected_version, bool):
            raise ReferralValidationError("expected_version must be an integer")

        values = {}
        if "referred_customer_address" in patch:
            address = await self._assignable_address(referral, patch["referred_customer_address"])
            if referral.referred_customer_address is None:
                values["referred_customer_address"] = address

        if "installation_date" in patch:
            values["installation_date"] = _parse_installation_date(patch["installation_date"])

        if "verified" in patch:
            if not isinstance(patch["verified"], bool):
                raise ReferralValidationError("verified must be a boolean")
            values["verified"] = patch["verified"]

        if "referred_id" in patch:
            referred = await self.repository.get_user(patch["referred_id"])
            if referred is None:
                raise ReferralValidationError(f"Referred user {patch['referred_id']} not found")
            values["referred_id"] = referred.id

        merged_install = values.get("installation_date", referral.installation_date)
        merged_verified = values.get("verified", referral.verified)
        if merged_verified and merged_install is None:
            raise ReferralValidationError("A verified referral needs an installation_date")

        previous_status = referral.status
        previous_verified = referral.verified
        new_status = compute_status(merged_install, merged_verified)
        values["status"] = new_status
        values["updated_at"] = utc_now()

        updated = await self.repository.update_referral_if_version(
            referral.id, expected_version, values,
        )
        logger.info(
            "Referral updated: status %s -> %s",
            previous_status.value, new_status.value,
            extra={"referral_id": str(updated.id), "contractor_id": str(updated.contractor_id)},
        )
        await self._record_event(updated, "referral_updated", {
            key: _event_value(value) for key, value in values.items() if key != "updated_at"
        } | {"previous_status": previous_status.value})

        if new_status != previous_status or values.get("verified", previous_verified) != previous_verified:
            await metrics.recompute(self.repository, updated.contractor_id)

        if new_status == ReferralStatus.COMPLETE and previous_status != ReferralStatus.COMPLETE:
            updated = await self._on_complete(updated)
        return updated

    async def verify_referral(
        self,
        code: str,
        referred_address: str,
        installation_date,
        *,
        verified: Optional[bool] = None,
        referred_email: Optional[str] = None,
        referred_name: Optional[str] = None,
        referred_phone: Optional[str] = None,
    ) -> Referral:
        """
        Record that a new customer used a code.

        verified defaults to True when the installation date is today or
        earlier, so a past install completes immediately and a future one
        waits. The same referral row is updated in place.
        """
        normalized = normalize_code(code)
        if not is_valid_code(normalized):
            raise ReferralValidationError(f"Malformed referral code: {code!r}")
        referral = await self.repository.get_referral_by_code(normalized)
        if referral is None:
            raise ReferralNotFoundError(f"Referral code {normalized} not found")
        if referral.verified:
            raise ReferralAlreadyVerifiedError(f"Referral code {normalized} already verified")
        if is_expired(referral):
            raise ReferralExpiredError(f"Referral code {normalized} has expired")

        install_at = _parse_installation_date(installation_date)
        if install_at is None:
            raise ReferralValidationError("installation_date is required")
        if verified is None:
            verified = calendar_date(install_at) <= utc_today()

        patch = {
            "referred_customer_address": referred_address,
            "installation_date": install_at,
            "verified": verified,
            "expected_version": referral.version,
        }
        if referred_email:
            # Fail address checks before the referred homeowner row is written
            await self._assignable_address(referral, referred_address)
            referred = await self._resolve_referred_homeowner(
                referral, referred_email, referred_name, referred_phone, referred_address,
            )
            patch["referred_id"] = referred.id

        updated = await self.update_referral(referral.id, patch)
        await self._record_event(updated, "referral_verified", {
            "referral_code": updated.referral_code,
            "status": updated.status.value,
            "verified": updated.verified,
        })

        referrer = await self.repository.get_user(updated.referrer_id)
        if referrer is not None:
            await self.send_code(
                updated, {"email": referrer.email, "phone": referrer.phone, "name": referrer.name},
                "referral_verified",
            )
        return updated

    async def refresh_statuses(self, contractor_id: Optional[uuid.UUID] = None) -> int:
        """
        Move wait_for_install referrals whose install day has arrived to
        complete. Returns the number of referrals changed.
        """
        waiting = await self.repository.list_referrals(
            contractor_id=contractor_id, status=ReferralStatus.WAIT_FOR_INSTALL,
        )
        today = utc_today()
        changed = []
        for referral in waiting:
            if not is_status_stale(referral, today):
                continue
            new_status = compute_status(referral.installation_date, referral.verified, today)
            try:
                updated = await self.repository.update_referral_if_version(
                    referral.id, referral.version, {"status": new_status, "updated_at": utc_now()},
                )
            except StaleWriteError:
                # A concurrent writer already recomputed it
                continue
            changed.append(updated)

        for contractor in {r.contractor_id for r in changed}:
            await metrics.recompute(self.repository, contractor)
        for referral in changed:
            if referral.status == ReferralStatus.COMPLETE:
                await self._on_complete(referral)

        if changed:
            logger.info("Referral statuses refreshed: %d", len(changed))
        return len(changed)

    # --- Metrics ---

    async def get_metrics(self, contractor_id: uuid.UUID, *, refresh: bool = False) -> ReferralMetric:
        await self._require_contractor(contractor_id)
        refreshed = await self.refresh_statuses(contractor_id)
        metric = await self.repository.get_metric(contractor_id)
        if metric is None or refreshed or refresh:
            metric = await metrics.recompute(self.repository, contractor_id)
        return metric

    # --- Rewards ---

    async def issue_reward(self, referral_id: uuid.UUID) -> Referral:
        """
        Pay the referrer for a complete referral.
        Already-sent rewards return unchanged. On vendor failure the referral
        is marked reward_status=failed and RewardDispatchError is re-raised.
        """
        referral = await self.get_referral(referral_id)
        if referral.reward_status == RewardStatus.SENT.value:
            return referral
        if referral.status != ReferralStatus.COMPLETE:
            raise RewardNotEligibleError(
                f"Referral {referral.referral_code} is {referral.status.value}, not complete"
            )
        if self.reward_dispatcher is None:
            raise RewardDispatchError("No reward dispatcher configured")

        referrer = await self.repository.get_user(referral.referrer_id)
        version = referral.version
        try:
            result = await self.reward_dispatcher.payout(
                {"email": referrer.email, "name": referrer.name},
                referral.reward_amount,
                referral.reward_type,
                idempotency_key=str(referral.id),
            )
        except RewardDispatchError as e:
            await self.repository.update_referral_if_version(referral.id, version, {
                "reward_status": RewardStatus.FAILED.value,
                "reward_error": str(e)[:1000],
                "updated_at": utc_now(),
            })
            await self._record_event(referral, "reward_failed", {"error": str(e)[:500]})
            logger.error(
                "Reward payout failed: %s", str(e),
                extra={"referral_id": str(referral.id), "error_code": e.kind},
            )
            raise

        updated = await self.repository.update_referral_if_version(referral.id, version, {
            "reward_status": RewardStatus.SENT.value,
            "reward_transaction_id": result["transaction_id"],
            "reward_error": None,
            "updated_at": utc_now(),
        })
        await self._record_event(updated, "reward_sent", {
            "transaction_id": result["transaction_id"],
            "reward_type": updated.reward_type,
            "reward_amount": updated.reward_amount,
        })
        return updated

    async def retry_failed_rewards(self, contractor_id: Optional[uuid.UUID] = None) -> int:
        """Retry every failed payout. Returns how many went through."""
        failed = await self.repository.list_referrals(
            contractor_id=contractor_id,
            status=ReferralStatus.COMPLETE,
            reward_status=RewardStatus.FAILED.value,
        )
        sent = 0
        for referral in failed:
            try:
                await self.issue_reward(referral.id)
                sent += 1
            except DependencyError:
                continue
            except StaleWriteError:
                continue
        return sent

    async def _on_complete(self, referral: Referral) -> Referral:
        if not self.settings.auto_reward_on_complete or self.reward_dispatcher is None:
            return referral
        try:
            return await self.issue_reward(referral.id)
        except DependencyError as e:
            logger.warning(
                "Auto reward failed, left for retry: %s", str(e),
                extra={"referral_id": str(referral.id)},
            )
            return await self.get_referral(referral.id)

    # --- Notifications ---

    async def send_code(
        self,
        referral: Referral,
        recipient: dict,
        context: str = "referral_issued",
        *,
        contractor: Optional[User] = None,
    ) -> Optional[dict]:
        if self.notifier is None:
            return None
        contractor = contractor or await self.repository.get_user(referral.contractor_id)
        contractor_name = contractor.display_name if contractor else "Your contractor"
        return await self.notifier.send(
            recipient, referral.referral_code, context, contractor_name=contractor_name,
        )

    # --- Internals ---

    async def _record_event(self, referral: Referral, event_type: str, data: dict) -> None:
        await self.repository.add_event(AnalyticsEvent(
            id=uuid.uuid4(),
            contractor_id=referral.contractor_id,
            referral_id=referral.id,
            event_type=event_type,
            event_data=data,
            created_at=utc_now(),
        ))

    async def _require_contractor(self, contractor_id: uuid.UUID) -> User:
        user = await self.repository.get_user(contractor_id)
        if user is None or user.role != UserRole.CONTRACTOR or not user.is_active:
            raise InvalidContractorError(f"{contractor_id} is not an active contractor")
        return user

    async def _require_referrer(self, referrer_id: uuid.UUID, contractor_id: uuid.UUID) -> User:
        user = await self.repository.get_user(referrer_id)
        if user is None or not user.is_active:
            raise InvalidReferrerError(f"Referrer {referrer_id} not found")

        if user.role == UserRole.EXISTING_HOMEOWNER:
            if user.contractor_id != contractor_id:
                raise InvalidReferrerError("Referrer belongs to a different contractor")
            return user
        elif user.role == UserRole.CONTRACTOR:
            raise InvalidReferrerError("Contractors cannot be referrers")
        elif user.role == UserRole.REFERRED_HOMEOWNER:
            raise InvalidReferrerError("Referred homeowners cannot issue referrals")
        raise InvalidReferrerError(f"Unknown role: {user.role}")

    async def _ensure_address_free(
        self,
        contractor_id: uuid.UUID,
        address: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        existing = await self.repository.find_referral_by_address(contractor_id, address)
        if existing is not None and existing.id != exclude_id:
            raise DuplicateAddressError("This referred address is already registered")

    async def _assignable_address(self, referral: Referral, raw_address) -> str:
        """Cleaned address this referral may take, or the matching error."""
        address = _clean_address(raw_address)
        if address is None:
            raise ReferralValidationError("referred_customer_address cannot be blank")
        current = referral.referred_customer_address
        if current is not None and current != address:
            raise AddressAlreadyResolvedError(
                f"Referral {referral.referral_code} already resolved to another address"
            )
        if current is None:
            await self._ensure_address_free(referral.contractor_id, address, exclude_id=referral.id)
        return address

    async def _resolve_referred_homeowner(
        self,
        referral: Referral,
        email: str,
        name: Optional[str],
        phone: Optional[str],
        address: Optional[str],
    ) -> User:
        """Reuse a referred homeowner by email, or create one for the contractor."""
        email = email.strip().lower()
        existing = await self.repository.get_user_by_email(email)
        if existing is not None:
            if existing.role != UserRole.REFERRED_HOMEOWNER:
                raise ReferralValidationError(
                    "That email belongs to an account that cannot be referred"
                )
            return existing

        now = utc_now()
        user = await self.repository.add_user(User(
            id=uuid.uuid4(),
            role=UserRole.REFERRED_HOMEOWNER,
            email=email,
            name=(name or email.split("@")[0]).strip(),
            phone=normalize_phone_e164(phone),
            address=_clean_address(address),
            contractor_id=referral.contractor_id,
            is_active=True,
            created_at=now,
            updated_at=now,
        ))
        logger.info(
            "Referred homeowner created", extra={"user_id": str(user.id), "referral_id": str(referral.id)},
        )
        return user
