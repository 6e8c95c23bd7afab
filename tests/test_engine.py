"""
Integration tests for the Campaign Gate request handlers.
"""

import pytest

from campaigngate.audit import is_audit_record, verify_governance_records
from campaigngate.core.engine import CampaignGate
from campaigngate.core.exceptions import (
    AuditWriteError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    StoreError,
    UnauthenticatedError,
    ValidationError,
)
from campaigngate.core.session import Session
from campaigngate.export.targets import Exporter

from conftest import activity, campaign_doc, period


async def audit_entries(store):
    return [doc for _, doc in await store.list("governance") if is_audit_record(doc)]


async def review_records(store):
    return [doc for _, doc in await store.list("governance") if doc.get("type") == "campaign_review"]


async def seed_campaign(store, campaign_id="c1", **overrides):
    await store.set("campaigns", campaign_id, campaign_doc(**overrides))


def approved_periods(*owners):
    return {
        "Monday": period(
            "2030-03-04",
            *[activity(f"a{i}", owner) for i, owner in enumerate(owners)],
        ),
    }


class FailingAuditStore:
    """Wrapper whose add() always fails, so no audit entry can be written."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def add(self, collection, data):
        raise StoreError("quota exceeded", collection=collection, operation="add")


class RacingStore:
    """Wrapper that lets a concurrent writer win every campaign transition."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def compare_and_update(self, collection, doc_id, expected, fields):
        if collection == "campaigns":
            await self._inner.update(collection, doc_id, {"status": "archived"})
        return await self._inner.compare_and_update(collection, doc_id, expected, fields)


class EditingStore:
    """Wrapper that lets a concurrent writer edit the campaign without touching status."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def compare_and_update(self, collection, doc_id, expected, fields):
        if collection == "campaigns":
            await self._inner.update(collection, doc_id, {"title": "Renamed elsewhere"})
        return await self._inner.compare_and_update(collection, doc_id, expected, fields)


class FailingReviewStore:
    """Wrapper whose governance set() always fails, so no review record lands."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def set(self, collection, doc_id, data):
        if collection == "governance":
            raise StoreError("disk full", collection=collection, operation="set")
        return await self._inner.set(collection, doc_id, data)


class LosingCampaignStore:
    """Wrapper whose campaign conditional updates always lose."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def compare_and_update(self, collection, doc_id, expected, fields):
        if collection == "campaigns":
            return False
        return await self._inner.compare_and_update(collection, doc_id, expected, fields)


class ExplodingExporter(Exporter):
    async def export(self, request):
        raise RuntimeError("socket closed")


class TestValidateCampaign:
    """Tests for validate_campaign."""

    @pytest.mark.asyncio
    async def test_valid(self, gate):
        response = await gate.validate_campaign(
            Session("u-editor"), {"campaignId": "c1", "campaignData": campaign_doc()}
        )

        assert response == {"success": True, "errors": [], "warnings": []}
        entries = await audit_entries(gate.store)
        assert len(entries) == 1
        assert entries[0]["action"] == "validate_campaign"
        assert entries[0]["metadata"]["outcome"] == "success"
        assert entries[0]["metadata"]["validationType"] == "draft"

    @pytest.mark.asyncio
    async def test_invalid_reports_errors(self, gate):
        data = campaign_doc()
        del data["title"]

        response = await gate.validate_campaign(
            Session("u-editor"), {"campaignId": "c1", "campaignData": data}
        )

        assert response["success"] is False
        assert "title is required" in response["errors"]

    @pytest.mark.asyncio
    async def test_unauthenticated(self, gate):
        with pytest.raises(UnauthenticatedError):
            await gate.validate_campaign(
                Session.anonymous(), {"campaignId": "c1", "campaignData": {}}
            )

        assert await audit_entries(gate.store) == []

    @pytest.mark.asyncio
    async def test_invalid_payload(self, gate):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await gate.validate_campaign(
                Session("u-editor"), {"campaignId": "", "validationType": "final"}
            )

        assert len(exc_info.value.problems) == 3


class TestSubmitForReview:
    """Tests for submit_for_review."""

    @pytest.mark.asyncio
    async def test_submit(self, gate):
        await seed_campaign(gate.store, status="approved")

        response = await gate.submit_for_review(
            Session("u-editor"), {"campaignId": "c1", "priority": "high", "notes": "asap"}
        )

        assert response["success"] is True
        campaign = await gate.store.get("campaigns", "c1")
        assert campaign["status"] == "in_review"
        review = await gate.store.get("governance", response["reviewId"])
        assert review["status"] == "pending"
        assert review["priority"] == "high"
        assert review["reviewType"] == "content"
        entries = await audit_entries(gate.store)
        assert [e["metadata"]["outcome"] for e in entries] == ["success"]

    @pytest.mark.asyncio
    async def test_validation_failure_is_precondition(self, gate):
        """Test publish validation errors abort before any mutation."""
        await seed_campaign(gate.store, status="draft")

        with pytest.raises(PreconditionFailedError) as exc_info:
            await gate.submit_for_review(Session("u-editor"), {"campaignId": "c1"})

        assert "Campaign must be approved before publishing" in exc_info.value.errors
        assert (await gate.store.get("campaigns", "c1"))["status"] == "draft"
        assert await review_records(gate.store) == []
        entries = await audit_entries(gate.store)
        assert len(entries) == 1
        assert entries[0]["metadata"]["outcome"] == "failure"
        assert entries[0]["metadata"]["error"] == "failed-precondition"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id", ["u-viewer", "u-reviewer"])
    async def test_requires_editor(self, gate, user_id):
        await seed_campaign(gate.store, status="approved")

        with pytest.raises(PermissionDeniedError):
            await gate.submit_for_review(Session(user_id), {"campaignId": "c1"})

        assert (await gate.store.get("campaigns", "c1"))["status"] == "approved"

    @pytest.mark.asyncio
    async def test_suspended_actor(self, gate):
        await seed_campaign(gate.store, status="approved")

        with pytest.raises(PermissionDeniedError):
            await gate.submit_for_review(Session("u-suspended"), {"campaignId": "c1"})

    @pytest.mark.asyncio
    async def test_missing_profile(self, gate):
        with pytest.raises(NotFoundError) as exc_info:
            await gate.submit_for_review(Session("ghost"), {"campaignId": "c1"})

        assert exc_info.value.message == "User profile not found"

    @pytest.mark.asyncio
    async def test_missing_campaign(self, gate):
        with pytest.raises(NotFoundError) as exc_info:
            await gate.submit_for_review(Session("u-editor"), {"campaignId": "nope"})

        assert exc_info.value.message == "Campaign not found"

    @pytest.mark.asyncio
    async def test_team_scope(self, gate):
        """Test a team-scoped campaign rejects editors from other teams."""
        await gate.store.update("users", "u-editor", {"teams": ["north"]})
        await seed_campaign(gate.store, status="approved", teamId="south")

        with pytest.raises(PermissionDeniedError) as exc_info:
            await gate.submit_for_review(Session("u-editor"), {"campaignId": "c1"})

        assert exc_info.value.rule == "team_scope"

    @pytest.mark.asyncio
    async def test_lost_race(self, config, seeded_store):
        """Test a concurrent status change surfaces as a precondition failure."""
        gate = CampaignGate(config=config, store=RacingStore(seeded_store))
        await seed_campaign(seeded_store, status="approved")

        with pytest.raises(PreconditionFailedError):
            await gate.submit_for_review(Session("u-editor"), {"campaignId": "c1"})

        assert await review_records(seeded_store) == []

    @pytest.mark.asyncio
    async def test_edit_during_submit(self, config, seeded_store):
        """Test an edit to validated fields between read and write blocks the transition."""
        gate = CampaignGate(config=config, store=EditingStore(seeded_store))
        await seed_campaign(seeded_store, status="approved")

        with pytest.raises(PreconditionFailedError):
            await gate.submit_for_review(Session("u-editor"), {"campaignId": "c1"})

        campaign = await seeded_store.get("campaigns", "c1")
        assert campaign["status"] == "approved"
        assert campaign["title"] == "Renamed elsewhere"
        assert await review_records(seeded_store) == []

    @pytest.mark.asyncio
    async def test_review_write_failure_restores_status(self, config, seeded_store):
        """Test a failed review write leaves the campaign submittable again."""
        await seed_campaign(seeded_store, status="approved")
        failing = CampaignGate(config=config, store=FailingReviewStore(seeded_store))

        with pytest.raises(InternalError):
            await failing.submit_for_review(Session("u-editor"), {"campaignId": "c1"})

        assert (await seeded_store.get("campaigns", "c1"))["status"] == "approved"

        gate = CampaignGate(config=config, store=seeded_store)
        response = await gate.submit_for_review(Session("u-editor"), {"campaignId": "c1"})
        assert response["success"] is True

    @pytest.mark.asyncio
    async def test_validation_error_carries_warnings(self, gate):
        await seed_campaign(gate.store, status="draft")

        with pytest.raises(ValidationError) as exc_info:
            await gate.submit_for_review(Session("u-editor"), {"campaignId": "c1"})

        assert exc_info.value.code == "failed-precondition"
        assert exc_info.value.current_status == "draft"
        assert exc_info.value.details["warnings"] == exc_info.value.warnings

    @pytest.mark.asyncio
    async def test_malformed_profile_is_internal(self, gate):
        """Test a corrupt stored profile is not reported as a caller error."""
        await gate.store.update("users", "u-editor", {"status": "bogus"})
        await seed_campaign(gate.store, status="approved")

        with pytest.raises(InternalError):
            await gate.submit_for_review(Session("u-editor"), {"campaignId": "c1"})


class TestApproveCampaign:
    """Tests for approve_campaign."""

    async def submitted(self, gate):
        await seed_campaign(gate.store, status="approved")
        response = await gate.submit_for_review(Session("u-editor"), {"campaignId": "c1"})
        return response["reviewId"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("approval_type,status", [("approve", "approved"), ("reject", "rejected")])
    async def test_decide(self, gate, approval_type, status):
        review_id = await self.submitted(gate)

        response = await gate.approve_campaign(Session("u-reviewer"), {
            "campaignId": "c1",
            "reviewId": review_id,
            "approvalType": approval_type,
            "reason": "Looks right",
        })

        assert response == {"success": True, "newStatus": status}
        assert (await gate.store.get("campaigns", "c1"))["status"] == status
        review = await gate.store.get("governance", review_id)
        assert review["status"] == status
        assert review["reviewedBy"] == "u-reviewer"

    @pytest.mark.asyncio
    async def test_already_processed(self, gate):
        review_id = await self.submitted(gate)
        payload = {
            "campaignId": "c1",
            "reviewId": review_id,
            "approvalType": "approve",
            "reason": "ok",
        }
        await gate.approve_campaign(Session("u-reviewer"), payload)

        with pytest.raises(PreconditionFailedError):
            await gate.approve_campaign(Session("u-admin"), payload)

    @pytest.mark.asyncio
    async def test_lost_campaign_update_releases_review(self, config, gate):
        """Test a lost campaign transition leaves the review decidable."""
        review_id = await self.submitted(gate)
        payload = {
            "campaignId": "c1",
            "reviewId": review_id,
            "approvalType": "approve",
            "reason": "ok",
        }
        losing = CampaignGate(config=config, store=LosingCampaignStore(gate.store))

        with pytest.raises(PreconditionFailedError):
            await losing.approve_campaign(Session("u-reviewer"), payload)

        review = await gate.store.get("governance", review_id)
        assert review["status"] == "pending"
        assert review["reviewedBy"] is None
        assert (await gate.store.get("campaigns", "c1"))["status"] == "in_review"

        response = await gate.approve_campaign(Session("u-reviewer"), payload)
        assert response == {"success": True, "newStatus": "approved"}

    @pytest.mark.asyncio
    async def test_editor_cannot_approve(self, gate):
        review_id = await self.submitted(gate)

        with pytest.raises(PermissionDeniedError):
            await gate.approve_campaign(Session("u-editor"), {
                "campaignId": "c1",
                "reviewId": review_id,
                "approvalType": "approve",
                "reason": "self-approval",
            })

    @pytest.mark.asyncio
    async def test_unknown_review(self, gate):
        await self.submitted(gate)

        with pytest.raises(NotFoundError):
            await gate.approve_campaign(Session("u-reviewer"), {
                "campaignId": "c1",
                "reviewId": "nope",
                "approvalType": "approve",
                "reason": "ok",
            })

    @pytest.mark.asyncio
    async def test_reason_required(self, gate):
        with pytest.raises(InvalidArgumentError):
            await gate.approve_campaign(Session("u-reviewer"), {
                "campaignId": "c1",
                "reviewId": "r1",
                "approvalType": "approve",
            })


class TestExportToWrike:
    """Tests for export_to_wrike."""

    @pytest.mark.asyncio
    async def test_export(self, gate):
        await seed_campaign(
            gate.store, status="approved", periods=approved_periods("u-editor", "u-admin")
        )

        response = await gate.export_to_wrike(Session("u-editor"), {"campaignId": "c1"})

        assert response["success"] is True
        assert response["externalId"].startswith("wrike_c1_")
        assert response["externalUrl"].endswith(response["externalId"])
        assert response["rowCount"] == 2
        campaign = await gate.store.get("campaigns", "c1")
        assert campaign["wrikeId"] == response["externalId"]
        record = await gate.store.get("exports", response["externalId"])
        assert [row["Assignee"] for row in record["sheets"]["Monday"]] == [
            "Erin Editor",
            "Ada Admin",
        ]
        entries = await audit_entries(gate.store)
        assert [e["metadata"]["outcome"] for e in entries] == ["success"]

    @pytest.mark.asyncio
    async def test_blocked_by_identity(self, gate):
        """Test one mismatched identity blocks the whole export."""
        await seed_campaign(
            gate.store, status="approved", periods=approved_periods("u-editor", "u-mismatch")
        )

        response = await gate.export_to_wrike(Session("u-editor"), {"campaignId": "c1"})

        assert response["success"] is False
        assert response["invalidUsers"] == [
            'Alex Smith (alex.smith@example.com): expected "Alex Smith", got "alex smith"'
        ]
        assert await gate.store.list("exports") == []
        assert "wrikeId" not in await gate.store.get("campaigns", "c1")
        entries = await audit_entries(gate.store)
        assert [e["metadata"]["outcome"] for e in entries] == ["blocked"]

    @pytest.mark.asyncio
    async def test_not_approved(self, gate):
        await seed_campaign(gate.store, status="draft", periods=approved_periods("u-editor"))

        with pytest.raises(PreconditionFailedError) as exc_info:
            await gate.export_to_wrike(Session("u-editor"), {"campaignId": "c1"})

        assert exc_info.value.current_status == "draft"

    @pytest.mark.asyncio
    async def test_active_campaign_exportable(self, gate):
        await seed_campaign(gate.store, status="active", periods=approved_periods("u-editor"))

        response = await gate.export_to_wrike(Session("u-admin"), {"campaignId": "c1"})

        assert response["success"] is True

    @pytest.mark.asyncio
    async def test_viewer_cannot_export(self, gate):
        await seed_campaign(gate.store, status="approved", periods=approved_periods("u-editor"))

        with pytest.raises(PermissionDeniedError):
            await gate.export_to_wrike(Session("u-viewer"), {"campaignId": "c1"})

    @pytest.mark.asyncio
    async def test_exporter_failure_is_internal(self, config, seeded_store):
        """Test unexpected failures are generic to the caller and still audited."""
        gate = CampaignGate(config=config, store=seeded_store, exporter=ExplodingExporter())
        await seed_campaign(seeded_store, status="approved", periods=approved_periods("u-editor"))

        with pytest.raises(InternalError) as exc_info:
            await gate.export_to_wrike(Session("u-editor"), {"campaignId": "c1"})

        assert "socket" not in exc_info.value.message
        entries = await audit_entries(seeded_store)
        assert entries[0]["metadata"] == {"outcome": "failure", "error": "internal"}


class TestAuditGuarantees:
    """Tests for the audit trail around handlers."""

    @pytest.mark.asyncio
    async def test_audit_write_failure_surfaces(self, config, seeded_store):
        """Test a failed audit write is an error, never a silent success."""
        gate = CampaignGate(config=config, store=FailingAuditStore(seeded_store))

        with pytest.raises(AuditWriteError):
            await gate.validate_campaign(
                Session("u-editor"), {"campaignId": "c1", "campaignData": campaign_doc()}
            )

    @pytest.mark.asyncio
    async def test_full_flow_verifies(self, gate):
        """Test every entry written across a full flow verifies."""
        await seed_campaign(gate.store, status="approved", periods=approved_periods("u-editor"))
        editor = Session("u-editor")

        await gate.validate_campaign(
            editor, {"campaignId": "c1", "campaignData": campaign_doc(), "validationType": "preview"}
        )
        submitted = await gate.submit_for_review(editor, {"campaignId": "c1"})
        await gate.approve_campaign(Session("u-reviewer"), {
            "campaignId": "c1",
            "reviewId": submitted["reviewId"],
            "approvalType": "approve",
            "reason": "ok",
        })
        await gate.export_to_wrike(editor, {"campaignId": "c1"})

        report = await verify_governance_records(gate.store)

        assert report.intact
        assert report.checked == 4
        assert report.skipped == 1


class TestComplianceReport:
    """Tests for the compliance report handler."""

    @pytest.mark.asyncio
    async def test_report(self, gate):
        await seed_campaign(gate.store)

        report = await gate.get_compliance_report(Session("u-viewer"), "c1")

        assert report["campaignId"] == "c1"
        assert await audit_entries(gate.store) == []

    @pytest.mark.asyncio
    async def test_requires_authentication(self, gate):
        with pytest.raises(UnauthenticatedError):
            await gate.get_compliance_report(Session.anonymous(), "c1")

    @pytest.mark.asyncio
    async def test_lifecycle(self, gate):
        await gate.start()
        await gate.stop()
