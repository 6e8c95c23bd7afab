"""
Campaign Gate - Campaign Governance & Access-Control Pipeline

Decides who may act on campaigns, validates campaign content before it
moves forward, records tamper-evident audit entries, and gates exports to
the external project-management tool.

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Campaign Gate Team"

from .core import CampaignGate
from .core.config import Config
from .core.exceptions import (
    CampaignGateError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    UnauthenticatedError,
)
from .core.session import Session

__all__ = [
    "CampaignGate",
    "Config",
    "Session",
    "CampaignGateError",
    "InvalidArgumentError",
    "NotFoundError",
    "PermissionDeniedError",
    "PreconditionFailedError",
    "UnauthenticatedError",
]
