"""
Campaign Gate Core Module

Request handlers, configuration, domain models and errors.
"""

from .engine import CampaignGate
from .config import Config
from .models import Actor, Record, Resource, ResourceType, Role, Tier, Verb
from .session import Session, SessionEvents
from .exceptions import (
    AuditWriteError,
    CampaignGateError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    StoreError,
    UnauthenticatedError,
    ValidationError,
)

__all__ = [
    "CampaignGate",
    "Config",
    "Actor",
    "Record",
    "Resource",
    "ResourceType",
    "Role",
    "Tier",
    "Verb",
    "Session",
    "SessionEvents",
    "AuditWriteError",
    "CampaignGateError",
    "InternalError",
    "InvalidArgumentError",
    "NotFoundError",
    "PermissionDeniedError",
    "PreconditionFailedError",
    "StoreError",
    "UnauthenticatedError",
    "ValidationError",
]
