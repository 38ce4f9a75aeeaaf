# flake8: noqa: F401
"""Schemas for the application."""

from .billing import (
    CancelSubscriptionRequest,
    ChangeLevelRequest,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    ConfirmCheckoutRequest,
    ConfirmCheckoutResponse,
    CustomerPortalRequest,
    CustomerPortalResponse,
    MemberStatusUpdateRequest,
    RecordPaymentRequest,
    RecordPaymentResponse,
    SubscriptionStatusResponse,
    SweepResult,
    SyncSubscriptionsRequest,
    SyncSummary,
)
from .app_setting import AppSettingCreate, AppSettingUpdate
from .member_event import MemberEvent, MemberEventType
from .member_profile import (
    MemberProfile,
    MemberProfileCreate,
    MemberProfileUpdate,
    MemberRole,
    MembershipLevel,
    MembershipState,
    MemberStatus,
)
from .membership_settings import (
    MembershipFees,
    MembershipFeesUpdate,
    TrialConfig,
    TrialConfigSchedule,
    TrialType,
)
from .payment_record import (
    MANUAL_PAYMENT_METHODS,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordCreate,
    PaymentStatus,
)
