"""
Campaign Gate Core Engine

Request handlers for the governance pipeline. Each handler:

1. checks the payload against its schema (invalid-argument)
2. authenticates the session (unauthenticated)
3. loads the actor and asks the permission resolver (permission-denied)
4. runs validation and, for export, the preflight gate
5. records exactly one audit entry for the terminal outcome, awaited

Permission and precondition failures abort before any mutation.
Unexpected failures are logged in full and surfaced as a generic
internal error.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from ..audit import AuditTrail
from ..export import export_multi_period
from ..export.targets import Exporter, ExportRequest, RecordingExporter
from ..governance import GovernanceEngine, ValidationContext, ValidationType
from ..permissions import PermissionResolver
from ..store import DocumentStore, create_store
from .config import Config
from .dates import utcnow
from .exceptions import (
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
from .models import Actor, ActorStatus, Record, Resource, ResourceType, Verb
from .schemas import (
    APPROVE_CAMPAIGN_SCHEMA,
    EXPORT_TO_WRIKE_SCHEMA,
    SUBMIT_FOR_REVIEW_SCHEMA,
    VALIDATE_CAMPAIGN_SCHEMA,
    parse_payload,
)
from .session import Session

logger = logging.getLogger(__name__)

USERS = "users"
CAMPAIGNS = "campaigns"

STATUS_IN_REVIEW = "in_review"
REVIEW_PENDING = "pending"

Outcome = Tuple[Dict[str, Any], Dict[str, Any]]


class CampaignGate:
    """
    Campaign Gate request handlers.

    Coordinates:
    - Permission resolution
    - Governance validation
    - Export preflight
    - Audit trail
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[DocumentStore] = None,
        resolver: Optional[PermissionResolver] = None,
        exporter: Optional[Exporter] = None,
    ):
        """Initialize Campaign Gate."""
        self.config = config or Config()
        self.store = store if store is not None else create_store(self.config.store)
        self.resolver = resolver or PermissionResolver(config=self.config.permissions)
        self.engine = GovernanceEngine(self.store, self.config.validation)
        self.audit = AuditTrail(self.store, self.config.audit)
        self.exporter = exporter or RecordingExporter(self.store, self.config.export)

    async def start(self) -> None:
        """Start Campaign Gate."""
        problems = self.config.validate()
        for problem in problems:
            logger.warning(f"Configuration problem: {problem}")
        logger.info("Campaign Gate started")

    async def stop(self) -> None:
        """Stop Campaign Gate."""
        logger.info("Stopping Campaign Gate...")
        await self.store.close()

    # ========================================================================
    # Request handlers
    # ========================================================================

    async def validate_campaign(
        self, session: Session, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Validate campaign data without changing anything.

        Returns:
            {"success", "errors", "warnings"}
        """
        return await self._boundary(
            "validate_campaign", self._validate_campaign(session, payload)
        )

    async def submit_for_review(
        self, session: Session, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Submit a campaign for review.

        Returns:
            {"success", "reviewId"}
        """
        return await self._boundary(
            "submit_for_review", self._submit_for_review(session, payload)
        )

    async def approve_campaign(
        self, session: Session, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Approve or reject a pending review.

        Returns:
            {"success", "newStatus"}
        """
        return await self._boundary(
            "approve_campaign", self._approve_campaign(session, payload)
        )

    async def export_to_wrike(
        self, session: Session, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Export an approved campaign's activities to the external tool.

        A preflight failure is returned, not raised, with every error and
        invalid identity; nothing leaves the system in that case.

        Returns:
            {"success", "externalId"?, "externalUrl"?, "errors"?, "invalidUsers"?}
        """
        return await self._boundary(
            "export_to_wrike", self._export_to_wrike(session, payload)
        )

    async def get_compliance_report(
        self, session: Session, campaign_id: str
    ) -> Dict[str, Any]:
        """Advisory compliance report; read-only and never audited."""
        return await self._boundary(
            "get_compliance_report", self._compliance_report(session, campaign_id)
        )

    # ========================================================================
    # Implementations
    # ========================================================================

    async def _validate_campaign(
        self, session: Session, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        data = parse_payload(VALIDATE_CAMPAIGN_SCHEMA, payload)
        user_id = self._authenticate(session)
        campaign_id = data["campaignId"]

        async def work() -> Outcome:
            result = await self.engine.validate_campaign(ValidationContext(
                campaign_id=campaign_id,
                campaign_data=data["campaignData"],
                validation_type=ValidationType(data["validationType"]),
                user_id=user_id,
            ))
            response = {
                "success": result.is_valid,
                "errors": result.errors,
                "warnings": result.warnings,
            }
            metadata = {
                "validationType": data["validationType"],
                "errorCount": len(result.errors),
                "warningCount": len(result.warnings),
            }
            return response, metadata

        return await self._audited("validate_campaign", campaign_id, user_id, work)

    async def _submit_for_review(
        self, session: Session, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        data = parse_payload(SUBMIT_FOR_REVIEW_SCHEMA, payload)
        user_id = self._authenticate(session)
        campaign_id = data["campaignId"]

        async def work() -> Outcome:
            actor = await self._load_actor(user_id)
            if not actor.has_any_role(self.config.validation.editor_roles):
                raise PermissionDeniedError(
                    "User does not have permission to submit for review",
                    actor_id=user_id,
                )

            campaign = await self._load_campaign(campaign_id)
            self._authorize(actor, Verb.UPDATE, campaign_id, campaign)

            result = await self.engine.validate_campaign(ValidationContext(
                campaign_id=campaign_id,
                campaign_data=campaign,
                validation_type=ValidationType.PUBLISH,
                user_id=user_id,
            ))
            if not result.is_valid:
                raise ValidationError(
                    "Campaign validation failed",
                    errors=result.errors,
                    warnings=result.warnings,
                    current_status=campaign.get("status"),
                )

            now = utcnow().isoformat()
            # The whole validated document must still hold, not just status.
            applied = await self.store.compare_and_update(
                CAMPAIGNS,
                campaign_id,
                expected=campaign,
                fields={
                    "status": STATUS_IN_REVIEW,
                    "updatedAt": now,
                    "lastReviewSubmission": now,
                },
            )
            if not applied:
                raise PreconditionFailedError(
                    "Campaign changed while it was being submitted for review",
                    current_status=campaign.get("status"),
                )

            review_id = self.store.new_id()
            try:
                await self._write_review(review_id, campaign_id, campaign, user_id, now, data)
            except StoreError:
                await self._restore_campaign(campaign_id, campaign, now)
                raise

            logger.info(f"Campaign {campaign_id} submitted for review {review_id}")
            return (
                {"success": True, "reviewId": review_id},
                {
                    "reviewId": review_id,
                    "reviewType": data["reviewType"],
                    "priority": data["priority"],
                    "previousStatus": campaign.get("status"),
                },
            )

        return await self._audited("submit_for_review", campaign_id, user_id, work)

    async def _write_review(
        self,
        review_id: str,
        campaign_id: str,
        campaign: Mapping[str, Any],
        user_id: str,
        now: str,
        data: Mapping[str, Any],
    ) -> None:
        await self.store.set(self.config.audit.collection, review_id, {
            "id": review_id,
            "type": "campaign_review",
            "title": f"Review: {campaign.get('title')}",
            "description": f"Campaign submitted for {data['reviewType']} review",
            "status": REVIEW_PENDING,
            "submittedBy": user_id,
            "submittedAt": now,
            "campaignId": campaign_id,
            "reviewType": data["reviewType"],
            "priority": data["priority"],
            "notes": data.get("notes", ""),
            "metadata": {
                "campaignTitle": campaign.get("title"),
                "campaignStatus": campaign.get("status"),
            },
        })

    async def _restore_campaign(
        self, campaign_id: str, campaign: Mapping[str, Any], submitted_at: str
    ) -> None:
        """Undo an in_review transition whose review record was never written."""
        restored = await self.store.compare_and_update(
            CAMPAIGNS,
            campaign_id,
            expected={"status": STATUS_IN_REVIEW, "lastReviewSubmission": submitted_at},
            fields={
                "status": campaign.get("status"),
                "updatedAt": campaign.get("updatedAt"),
                "lastReviewSubmission": campaign.get("lastReviewSubmission"),
            },
        )
        if not restored:
            logger.error(
                f"Campaign {campaign_id} left in {STATUS_IN_REVIEW} without a review record"
            )

    async def _approve_campaign(
        self, session: Session, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        data = parse_payload(APPROVE_CAMPAIGN_SCHEMA, payload)
        user_id = self._authenticate(session)
        campaign_id = data["campaignId"]
        review_id = data["reviewId"]
        approve = data["approvalType"] == "approve"
        new_status = "approved" if approve else "rejected"

        async def work() -> Outcome:
            actor = await self._load_actor(user_id)
            if not actor.has_any_role(self.config.validation.reviewer_roles):
                raise PermissionDeniedError(
                    "User does not have permission to approve campaigns",
                    actor_id=user_id,
                )

            campaign = await self._load_campaign(campaign_id)
            self._authorize(
                actor, Verb.APPROVE if approve else Verb.REJECT, campaign_id, campaign
            )

            review = await self.store.get(self.config.audit.collection, review_id)
            if review is None or review.get("campaignId") != campaign_id:
                raise NotFoundError(
                    "Review record not found",
                    collection=self.config.audit.collection,
                    document_id=review_id,
                )
            if review.get("status") != REVIEW_PENDING:
                raise PreconditionFailedError(
                    "Review has already been processed",
                    current_status=review.get("status"),
                )
            if campaign.get("status") != STATUS_IN_REVIEW:
                raise PreconditionFailedError(
                    "Campaign is not awaiting review",
                    current_status=campaign.get("status"),
                )

            now = utcnow().isoformat()
            claimed = await self.store.compare_and_update(
                self.config.audit.collection,
                review_id,
                expected={"status": REVIEW_PENDING},
                fields={
                    "status": new_status,
                    "reviewedBy": user_id,
                    "reviewedAt": now,
                    "reason": data["reason"],
                },
            )
            if not claimed:
                raise PreconditionFailedError("Review has already been processed")

            applied = await self.store.compare_and_update(
                CAMPAIGNS,
                campaign_id,
                expected={"status": STATUS_IN_REVIEW},
                fields={
                    "status": new_status,
                    "updatedAt": now,
                    "lastReviewDecision": now,
                    "reviewDecision": data["approvalType"],
                    "reviewReason": data["reason"],
                },
            )
            if not applied:
                await self._release_review(review_id, user_id, now, new_status)
                raise PreconditionFailedError(
                    "Campaign changed while the review was being decided"
                )

            logger.info(f"Campaign {campaign_id} {new_status} by {user_id}")
            return (
                {"success": True, "newStatus": new_status},
                {
                    "reviewId": review_id,
                    "reason": data["reason"],
                    "previousStatus": STATUS_IN_REVIEW,
                    "newStatus": new_status,
                },
            )

        return await self._audited(
            f"campaign_{data['approvalType']}", campaign_id, user_id, work
        )

    async def _release_review(
        self, review_id: str, user_id: str, claimed_at: str, claimed_status: str
    ) -> None:
        """Return a claimed review to pending so the decision can be retried."""
        released = await self.store.compare_and_update(
            self.config.audit.collection,
            review_id,
            expected={
                "status": claimed_status,
                "reviewedBy": user_id,
                "reviewedAt": claimed_at,
            },
            fields={
                "status": REVIEW_PENDING,
                "reviewedBy": None,
                "reviewedAt": None,
                "reason": None,
            },
        )
        if not released:
            logger.error(f"Review {review_id} could not be returned to {REVIEW_PENDING}")

    async def _export_to_wrike(
        self, session: Session, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        data = parse_payload(EXPORT_TO_WRIKE_SCHEMA, payload)
        user_id = self._authenticate(session)
        campaign_id = data["campaignId"]

        async def work() -> Outcome:
            actor = await self._load_actor(user_id)
            if not actor.has_any_role(self.config.export.exporter_roles):
                raise PermissionDeniedError(
                    "User does not have permission to export to Wrike",
                    actor_id=user_id,
                )

            campaign = await self._load_campaign(campaign_id)
            self._authorize(actor, Verb.EXPORT, campaign_id, campaign)

            status = campaign.get("status")
            if status not in self.config.export.exportable_statuses:
                raise PreconditionFailedError(
                    "Campaign must be approved or active to export to Wrike",
                    current_status=status,
                )

            periods = campaign.get("periods") or {}
            owners = await self._load_owners(periods)
            gate = export_multi_period(
                periods, owners, self.config.export.approved_activity_status
            )

            if not gate.success:
                logger.warning(f"Export of campaign {campaign_id} blocked by preflight")
                response: Dict[str, Any] = {"success": False, "errors": gate.errors or []}
                if gate.invalid_users:
                    response["invalidUsers"] = gate.invalid_users
                return response, {
                    "outcome": "blocked",
                    "exportType": data["exportType"],
                    "errors": gate.errors or [],
                    "invalidUserCount": len(gate.invalid_users or []),
                }

            receipt = await self.exporter.export(ExportRequest(
                campaign_id=campaign_id,
                campaign=campaign,
                result=gate,
                export_type=data["exportType"],
                include_metadata=data["includeMetadata"],
                project_id=data.get("projectId"),
                requested_by=user_id,
            ))

            now = utcnow().isoformat()
            await self.store.update(CAMPAIGNS, campaign_id, {
                "wrikeId": receipt.external_id,
                "lastWrikeExport": now,
                "updatedAt": now,
            })

            return (
                {
                    "success": True,
                    "externalId": receipt.external_id,
                    "externalUrl": receipt.external_url,
                    "rowCount": len(gate.rows or []),
                },
                {
                    "outcome": "success",
                    "externalId": receipt.external_id,
                    "exportType": data["exportType"],
                    "includeMetadata": data["includeMetadata"],
                    "rowCount": len(gate.rows or []),
                },
            )

        return await self._audited("export_to_wrike", campaign_id, user_id, work)

    async def _compliance_report(self, session: Session, campaign_id: str) -> Dict[str, Any]:
        user_id = self._authenticate(session)
        actor = await self._load_actor(user_id)
        if not self.resolver.can_resource(actor, Verb.READ, ResourceType.CAMPAIGNS, campaign_id):
            raise PermissionDeniedError(
                "User may not read campaigns",
                actor_id=user_id,
                permission="campaigns:read",
            )
        return await self.engine.get_compliance_report(campaign_id)

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _authenticate(session: Optional[Session]) -> str:
        if session is None or not session.authenticated:
            raise UnauthenticatedError()
        return session.user_id

    async def _load_actor(self, user_id: str) -> Actor:
        doc = await self.store.get(USERS, user_id)
        if doc is None:
            raise NotFoundError(
                "User profile not found", collection=USERS, document_id=user_id
            )
        actor = _actor_from_document(user_id, doc)
        if actor.status is ActorStatus.SUSPENDED:
            raise PermissionDeniedError("User account is suspended", actor_id=user_id)
        return actor

    async def _load_campaign(self, campaign_id: str) -> Dict[str, Any]:
        campaign = await self.store.get(CAMPAIGNS, campaign_id)
        if campaign is None:
            raise NotFoundError(
                "Campaign not found", collection=CAMPAIGNS, document_id=campaign_id
            )
        return campaign

    async def _load_owners(self, periods: Mapping[str, Any]) -> Dict[str, Actor]:
        owner_ids = {
            activity.get("ownerUid")
            for period in periods.values()
            for activity in (period.get("activities") or [])
            if activity.get("ownerUid")
        }
        owners: Dict[str, Actor] = {}
        for owner_id in sorted(owner_ids):
            doc = await self.store.get(USERS, owner_id)
            if doc is not None:
                owners[owner_id] = _actor_from_document(owner_id, doc)
        return owners

    def _authorize(
        self,
        actor: Actor,
        verb: Verb,
        campaign_id: str,
        campaign: Mapping[str, Any],
    ) -> None:
        record = Record(
            type=ResourceType.CAMPAIGNS,
            id=campaign_id,
            team_id=campaign.get("teamId"),
            status=campaign.get("status"),
        )
        decision = self.resolver.explain(
            actor, verb, Resource(type=ResourceType.CAMPAIGNS, id=campaign_id), record
        )
        if not decision.allowed:
            raise PermissionDeniedError(
                f"Permission denied: {decision.permission}",
                actor_id=actor.id,
                permission=decision.permission,
                rule=decision.rule,
            )

    async def _audited(
        self,
        action: str,
        resource_id: str,
        user_id: str,
        work: Callable[[], Awaitable[Outcome]],
    ) -> Dict[str, Any]:
        """
        Run a handler body and record one audit entry for its outcome.

        The audit write is awaited on both paths; AuditWriteError from it
        propagates to the caller.
        """
        try:
            response, metadata = await work()
        except CampaignGateError as e:
            await self.audit.record(action, resource_id, user_id, {
                "outcome": "failure",
                "error": e.code,
                "message": e.message,
            })
            raise
        except Exception:
            await self.audit.record(action, resource_id, user_id, {
                "outcome": "failure",
                "error": "internal",
            })
            raise

        metadata.setdefault("outcome", "success")
        await self.audit.record(action, resource_id, user_id, metadata)
        return response

    async def _boundary(self, name: str, handler: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return await handler
        except StoreError as e:
            logger.error(f"Store failure in {name}: {e}", exc_info=True)
            raise InternalError(f"Internal server error during {name}") from e
        except CampaignGateError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in {name}: {e}", exc_info=True)
            raise InternalError(f"Internal server error during {name}") from e


def _actor_from_document(user_id: str, doc: Mapping[str, Any]) -> Actor:
    """Parse a stored profile; a malformed one is a store fault, not a caller error."""
    try:
        return Actor.from_document(user_id, doc)
    except InvalidArgumentError as exc:
        raise StoreError(
            f"Malformed user profile {USERS}/{user_id}: {exc.message}",
            collection=USERS,
            operation="get",
        ) from exc
