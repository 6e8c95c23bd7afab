"""
Campaign Gate - Governance Validation Engine

Staged campaign validation and advisory compliance reporting.

Stages run in order and never short-circuit, so a caller gets every
problem in one pass:
1. Required fields
2. Content policy
3. Business rules
4. Actor permissions
5. Publish readiness (publish validation only)

Errors block the action; warnings are advisory.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..core.config import ValidationConfig
from ..core.dates import parse_datetime, utcnow
from ..core.exceptions import InvalidArgumentError, NotFoundError
from ..core.models import Actor
from ..store import DocumentStore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "description", "assignedTo", "dueDate")

APPROVED_STATUS = "approved"


class ValidationType(Enum):
    """How strictly a campaign is checked."""
    DRAFT = "draft"
    PREVIEW = "preview"
    PUBLISH = "publish"


@dataclass
class ValidationContext:
    """Input to a validation run."""
    campaign_id: str
    campaign_data: Mapping[str, Any]
    validation_type: ValidationType = ValidationType.DRAFT
    user_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.validation_type, ValidationType):
            self.validation_type = ValidationType(self.validation_type)


@dataclass
class ValidationResult:
    """Categorized validation outcome."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "isValid": self.is_valid,
        }


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return value is None or value is False or value == 0 or value == [] or value == {}


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


class GovernanceEngine:
    """
    Governance Validation Engine.

    Reads the acting user's profile from the document store; everything
    else is computed from the campaign data handed in.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[ValidationConfig] = None,
        users_collection: str = "users",
        campaigns_collection: str = "campaigns",
    ):
        self.store = store
        self.config = config or ValidationConfig()
        self.users_collection = users_collection
        self.campaigns_collection = campaigns_collection

    async def validate_campaign(self, context: ValidationContext) -> ValidationResult:
        """
        Run every applicable stage against a campaign.

        Args:
            context: Campaign data, validation type and acting user

        Returns:
            ValidationResult with all errors and warnings collected
        """
        data = context.campaign_data
        result = ValidationResult()

        self._validate_required_fields(data, result.errors)
        self._validate_content_policy(data, result.errors, result.warnings)
        self._validate_business_rules(data, result.errors, result.warnings)
        await self._validate_user_permissions(context.user_id, data, result.errors)

        if context.validation_type is ValidationType.PUBLISH:
            self._validate_publish_requirements(data, result.errors)

        logger.info(
            f"Validated campaign {context.campaign_id} "
            f"({context.validation_type.value}): "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _validate_required_fields(self, data: Mapping[str, Any], errors: List[str]) -> None:
        for name in REQUIRED_FIELDS:
            if _is_blank(data.get(name)):
                errors.append(f"{name} is required")

        raw_due = data.get("dueDate")
        if _is_blank(raw_due):
            return

        due = parse_datetime(raw_due)
        if due is None:
            errors.append("Due date must be a valid date")
        elif due <= utcnow():
            errors.append("Due date must be in the future")

    def _validate_content_policy(
        self,
        data: Mapping[str, Any],
        errors: List[str],
        warnings: List[str],
    ) -> None:
        title = _text(data.get("title"))
        description = _text(data.get("description"))

        content = f"{title} {description}".lower()
        for word in self.config.denylist:
            if word.lower() in content:
                warnings.append(f'Content may contain inappropriate language: "{word}"')

        if len(title) > self.config.title_max_length:
            errors.append(
                f"Title must be {self.config.title_max_length} characters or less"
            )

        if len(description) > self.config.description_warn_length:
            warnings.append(
                "Description is quite long, consider shortening for better engagement"
            )

    def _validate_business_rules(
        self,
        data: Mapping[str, Any],
        errors: List[str],
        warnings: List[str],
    ) -> None:
        budget = data.get("budget")
        if budget is not None:
            if isinstance(budget, bool) or not isinstance(budget, (int, float)):
                errors.append("Budget must be a number")
            elif budget < 0:
                errors.append("Budget cannot be negative")
            elif budget > self.config.budget_warn_threshold:
                warnings.append("Budget exceeds recommended maximum for single campaign")

        due = parse_datetime(data.get("dueDate"))
        if due is None:
            return

        created = parse_datetime(data.get("createdAt")) or utcnow()
        days = math.ceil((due - created).total_seconds() / 86400)

        if days < self.config.timeline_min_days:
            errors.append(
                f"Campaign timeline must be at least {self.config.timeline_min_days} day"
                + ("" if self.config.timeline_min_days == 1 else "s")
            )
        elif days > self.config.timeline_max_days:
            warnings.append(
                "Campaign timeline exceeds 1 year, consider breaking into smaller campaigns"
            )

    async def _validate_user_permissions(
        self,
        user_id: Optional[str],
        data: Mapping[str, Any],
        errors: List[str],
    ) -> None:
        if not user_id:
            errors.append("User profile not found")
            return

        try:
            profile = await self.store.get(self.users_collection, user_id)
        except Exception as e:
            logger.error(f"Error validating user permissions: {e}", exc_info=True)
            errors.append("Unable to validate user permissions")
            return

        if profile is None:
            errors.append("User profile not found")
            return

        try:
            actor = Actor.from_document(user_id, profile)
        except InvalidArgumentError as e:
            logger.error(f"Malformed profile for {user_id}: {e}")
            errors.append("Unable to validate user permissions")
            return

        if not actor.has_any_role(self.config.editor_roles):
            errors.append("User does not have permission to create campaigns")

        assigned_to = data.get("assignedTo")
        if assigned_to and assigned_to != user_id:
            if not actor.has_any_role(self.config.assigner_roles):
                errors.append(
                    "User does not have permission to assign campaigns to other users"
                )

    def _validate_publish_requirements(
        self, data: Mapping[str, Any], errors: List[str]
    ) -> None:
        if _is_blank(data.get("assignedTo")):
            errors.append("Campaign must be assigned to someone before publishing")

        if data.get("status") != APPROVED_STATUS:
            errors.append("Campaign must be approved before publishing")

    # ------------------------------------------------------------------
    # Compliance report
    # ------------------------------------------------------------------

    async def get_compliance_report(
        self,
        campaign_id: str,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build an advisory compliance report for a stored campaign.

        Never blocks anything; the same checks as validation are grouped
        by category and improvement suggestions are appended.

        Args:
            campaign_id: Campaign to report on
            user_id: User whose permissions are checked; defaults to the
                campaign's creator

        Raises:
            NotFoundError: If the campaign does not exist
        """
        data = await self.store.get(self.campaigns_collection, campaign_id)
        if data is None:
            raise NotFoundError(
                "Campaign not found",
                collection=self.campaigns_collection,
                document_id=campaign_id,
            )

        content_errors: List[str] = []
        content_warnings: List[str] = []
        self._validate_content_policy(data, content_errors, content_warnings)

        business_errors: List[str] = []
        business_warnings: List[str] = []
        self._validate_business_rules(data, business_errors, business_warnings)

        subject = user_id or data.get("createdBy")
        permission_errors: List[str] = []
        if subject:
            await self._validate_user_permissions(subject, data, permission_errors)
            permission_status = "compliant" if not permission_errors else "non_compliant"
        else:
            permission_errors.append("No owning user recorded for campaign")
            permission_status = "unknown"

        return {
            "campaignId": campaign_id,
            "generatedAt": utcnow().isoformat(),
            "compliance": {
                "contentPolicy": self._category(
                    ["language", "length", "format"], content_errors, content_warnings
                ),
                "businessRules": self._category(
                    ["budget", "timeline", "assignments"], business_errors, business_warnings
                ),
                "userPermissions": {
                    "status": permission_status,
                    "checks": ["userRoles", "teamAccess", "campaignPermissions"],
                    "issues": permission_errors,
                    "warnings": [],
                },
            },
            "recommendations": self._recommendations(data),
        }

    @staticmethod
    def _category(checks: List[str], issues: List[str], warnings: List[str]) -> Dict[str, Any]:
        return {
            "status": "compliant" if not issues else "non_compliant",
            "checks": checks,
            "issues": issues,
            "warnings": warnings,
        }

    @staticmethod
    def _recommendations(data: Mapping[str, Any]) -> List[str]:
        recommendations = []

        if not data.get("budget"):
            recommendations.append("Consider adding a budget to track campaign costs")

        if not data.get("tags"):
            recommendations.append(
                "Add tags to improve campaign categorization and searchability"
            )

        if len(_text(data.get("description")).strip()) < 20:
            recommendations.append(
                "Expand the description so reviewers understand the campaign goal"
            )

        return recommendations


__all__ = [
    "GovernanceEngine",
    "REQUIRED_FIELDS",
    "ValidationContext",
    "ValidationResult",
    "ValidationType",
]
