"""CRUD operations for the application."""

from .crud_app_setting import app_setting
from .crud_member_profile import member_profile
from .crud_payment_record import payment_record

__all__ = [
    "app_setting",
    "member_profile",
    "payment_record",
]
