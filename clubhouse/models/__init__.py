"""Models for the application."""

from .app_setting import AppSetting
from .member_profile import MemberProfile
from .payment_record import PaymentRecord

__all__ = ["AppSetting", "MemberProfile", "PaymentRecord"]
