"""
API request and response schemas.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=255)
    company_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = None
    referral_code: Optional[str] = None  # homeowner claiming an imported account


class AuthResponse(BaseModel):
    token: str
    user_id: str
    role: str
    name: str


class NotifyTarget(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None


class CreateReferralRequest(BaseModel):
    referrer_id: Optional[str] = None  # required when a contractor issues on a homeowner's behalf
    referred_address: Optional[str] = None
    reward_type: Optional[str] = None
    reward_amount: Optional[float] = Field(default=None, gt=0)
    notify: Optional[NotifyTarget] = None


class UpdateReferralRequest(BaseModel):
    referred_customer_address: Optional[str] = None
    installation_date: Optional[datetime] = None
    verified: Optional[bool] = None
    referred_id: Optional[str] = None
    expected_version: Optional[int] = None


class VerifyReferralRequest(BaseModel):
    code: str
    referred_address: str
    installation_date: datetime
    verified: Optional[bool] = None
    referred_email: Optional[str] = None
    referred_name: Optional[str] = None
    referred_phone: Optional[str] = None


class ReferralSummary(BaseModel):
    id: str
    referral_code: str
    contractor_id: str
    referrer_id: str
    referred_id: Optional[str] = None
    referred_customer_address: Optional[str] = None
    status: str
    verified: bool
    installation_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    reward_type: str
    reward_amount: float
    reward_status: str
    reward_transaction_id: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime


class ReferralListResponse(BaseModel):
    referrals: list[ReferralSummary]
    total: int


class MetricsResponse(BaseModel):
    contractor_id: str
    total_referrals: int
    converted_referrals: int
    conversion_rate: Decimal
    average_time_to_conversion: Optional[int] = None
    updated_at: datetime


class HomeownerSummary(BaseModel):
    id: str
    name: str
    email: str
    phone_masked: str = ""
    address: Optional[str] = None
    referral_code: Optional[str] = None
    registered: bool = False
    created_at: datetime


class HomeownerImportResponse(BaseModel):
    created: int
    skipped: list[str]
    notified: int
    homeowners: list[HomeownerSummary]


class ErrorResponse(BaseModel):
    error: str
    detail: str
    retryable: bool = False
