"""
Auth endpoints - contractor signup, homeowner account claim, login.
Also provides the get_current_user / get_current_contractor dependencies.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from refertrack.api.dependencies import get_repository
from refertrack.config import get_settings
from refertrack.models.user import User, UserRole
from refertrack.schemas.api_responses import AuthResponse, LoginRequest, RegisterRequest
from refertrack.services.code_generator import normalize_code
from refertrack.storage.base import ReferralRepository
from refertrack.utils.email_validation import is_valid_email_format, normalize_email
from refertrack.utils.logging import bind_actor, mask_email
from refertrack.utils.phone import normalize_phone_e164
from refertrack.utils.timezone import utc_now

logger = logging.getLogger(__name__)
router = APIRouter(tags=["auth"])
bearer_scheme = HTTPBearer()


# === RATE LIMITING ===

async def _check_auth_rate_limit(
    action: str,
    identifier: str,
    max_attempts: int = 5,
    window_seconds: int = 900,
) -> None:
    """Redis-based rate limiter for auth endpoints."""
    try:
        from refertrack.utils.redis import get_redis
        redis = await get_redis()
        key = f"refertrack:rate:{action}:{identifier}"
        count = await redis.incr(key)
        if count == 1:
            await redis.expire(key, window_seconds)
        if count > max_attempts:
            raise HTTPException(
                status_code=429,
                detail="Too many attempts. Please try again later.",
                headers={"Retry-After": str(window_seconds)},
            )
    except HTTPException:
        raise
    except Exception as e:
        # Fail open - don't block auth if Redis is down, but log it
        logger.warning("Rate limiting unavailable (Redis error): %s", str(e))


# === TOKENS & PASSWORDS ===

def _jwt_secret() -> str:
    settings = get_settings()
    return settings.jwt_secret or settings.app_secret_key


def create_access_token(user: User) -> str:
    import jwt
    settings = get_settings()
    return jwt.encode(
        {
            "user_id": str(user.id),
            "role": user.role.value,
            "exp": datetime.now(timezone.utc) + timedelta(hours=settings.jwt_expiry_hours),
        },
        _jwt_secret(),
        algorithm="HS256",
    )


def hash_password(password: str) -> str:
    import bcrypt
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    import bcrypt
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def _auth_response(user: User) -> AuthResponse:
    return AuthResponse(
        token=create_access_token(user),
        user_id=str(user.id),
        role=user.role.value,
        name=user.display_name,
    )


# === DEPENDENCIES ===

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    repository: ReferralRepository = Depends(get_repository),
) -> User:
    """Dependency to extract and verify the user from a JWT Bearer token."""
    import jwt as pyjwt

    try:
        payload = pyjwt.decode(credentials.credentials, _jwt_secret(), algorithms=["HS256"])
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        user_uuid = uuid.UUID(payload.get("user_id") or "")
    except (ValueError, AttributeError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = await repository.get_user(user_uuid)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    bind_actor(user.role.value, user.id)
    return user


async def get_current_contractor(
    user: User = Depends(get_current_user),
) -> User:
    """Dependency that requires the authenticated user to be a contractor."""
    if user.role != UserRole.CONTRACTOR:
        raise HTTPException(status_code=403, detail="Contractor access required")
    return user


# === AUTH ===

@router.post("/api/v1/auth/register", response_model=AuthResponse)
async def register(
    payload: RegisterRequest,
    request: Request,
    repository: ReferralRepository = Depends(get_repository),
):
    """
    Contractor signup. Imported homeowners claim their account instead by
    sending the referral code from their welcome email.
    """
    client_ip = request.client.host if request.client else "unknown"
    await _check_auth_rate_limit("register", client_ip, max_attempts=5, window_seconds=3600)

    email = normalize_email(payload.email)
    if not is_valid_email_format(email):
        raise HTTPException(status_code=400, detail="Invalid email address")

    existing = await repository.get_user_by_email(email)

    if payload.referral_code:
        code = normalize_code(payload.referral_code)
        if (
            existing is None
            or existing.role != UserRole.EXISTING_HOMEOWNER
            or existing.referral_code != code
        ):
            raise HTTPException(status_code=400, detail="Email and referral code do not match")
        if existing.password_hash:
            raise HTTPException(status_code=409, detail="This account is already registered")
        existing.password_hash = hash_password(payload.password)
        existing.updated_at = utc_now()
        logger.info("Homeowner account claimed: %s", mask_email(email), extra={"user_id": str(existing.id)})
        return _auth_response(existing)

    if existing is not None:
        raise HTTPException(status_code=409, detail="An account with this email already exists")
    if not payload.company_name or not payload.company_name.strip():
        raise HTTPException(status_code=400, detail="Company name is required")

    phone = None
    if payload.phone:
        phone = normalize_phone_e164(payload.phone)
        if not phone:
            raise HTTPException(status_code=400, detail="Invalid phone number format")

    now = utc_now()
    user = await repository.add_user(User(
        id=uuid.uuid4(),
        role=UserRole.CONTRACTOR,
        email=email,
        name=payload.name.strip(),
        phone=phone,
        company_name=payload.company_name.strip(),
        password_hash=hash_password(payload.password),
        is_active=True,
        created_at=now,
        updated_at=now,
    ))
    logger.info("New contractor signup: %s (%s)", user.company_name, mask_email(email))
    return _auth_response(user)


@router.post("/api/v1/auth/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    repository: ReferralRepository = Depends(get_repository),
):
    """Authenticate any user with a password and return a JWT token."""
    email = normalize_email(payload.email)
    # Rate limit: 5 attempts per email per 15 minutes
    await _check_auth_rate_limit("login", email)

    user = await repository.get_user_by_email(email)
    if not user or not user.password_hash or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return _auth_response(user)
