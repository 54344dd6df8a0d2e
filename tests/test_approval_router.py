"""
Approval routing tests.

Covers request creation guards (one pending request per type, terminal
queries, validation), the approve replay with composed actor and remarks,
rejection, double-decision protection and permission scoping.
"""

import pytest
from sqlalchemy import select, update

from querydesk.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from querydesk.models import db
from querydesk.models.approval import ApprovalRequest
from querydesk.models.chat import ChatMessage
from querydesk.services import approval_router
from querydesk.services.query_lifecycle import change_status


def _messages(query_id, action_type=None):
    stmt = select(ChatMessage).where(ChatMessage.query_id == query_id).order_by(ChatMessage.id)
    if action_type is not None:
        stmt = stmt.where(ChatMessage.action_type == action_type)
    return db.session.execute(stmt).scalars().all()


def _pending_count(query_id, request_type):
    return len(db.session.execute(
        select(ApprovalRequest.id).where(
            ApprovalRequest.query_id == query_id,
            ApprovalRequest.request_type == request_type,
            ApprovalRequest.status == "pending",
        )
    ).all())


# ── Create ───────────────────────────────────────────────────────────────────


class TestCreateRequest:
    def test_creates_pending_request_with_command(self, make_query):
        q = make_query()

        req = approval_router.create_request(
            q.id, "deferral", requested_by="Operations", assigned_to="Credit Manager", remarks="Awaiting ITR",
        )

        assert req.status == "pending"
        assert req.request_type == "deferral"
        assert req.command["type"] == "change_status"
        assert req.command["request_type"] == "deferral"
        assert req.command["payload"]["new_status"] == "deferred"
        assert req.command["payload"]["query_id"] == q.id
        assert req.command["payload"]["assigned_to"] == "Credit Manager"

    def test_logs_request_message(self, make_query):
        q = make_query()

        req = approval_router.create_request(q.id, "otc", requested_by="Operations")

        [msg] = _messages(q.id)
        assert msg.action_type == "request-otc"
        assert msg.request_id == req.id
        assert msg.is_system_message is True
        assert msg.message.startswith("OTC REQUEST sent to Management by Operations")

    def test_duplicate_pending_request_is_conflict(self, make_query):
        q1 = make_query()
        approval_router.create_request(q1.id, "otc", requested_by="Operations")

        with pytest.raises(ConflictError):
            approval_router.create_request(q1.id, "otc", requested_by="Operations")
        assert _pending_count(q1.id, "otc") == 1

    def test_distinct_request_types_coexist(self, make_query):
        q = make_query()

        approval_router.create_request(q.id, "otc", requested_by="Operations")
        approval_router.create_request(q.id, "deferral", requested_by="Operations")

        assert _pending_count(q.id, "otc") == 1
        assert _pending_count(q.id, "deferral") == 1

    def test_new_request_allowed_after_decision(self, make_query, authority):
        q = make_query()
        first = approval_router.create_request(q.id, "approve", requested_by="Operations")
        approval_router.decide(first.id, "reject", actor=authority)

        second = approval_router.create_request(q.id, "approve", requested_by="Operations")

        assert second.id != first.id
        assert _pending_count(q.id, "approve") == 1

    def test_resolved_query_is_conflict(self, make_query, originator):
        q = make_query()
        change_status(q.id, "approve", actor=originator)
        change_status(q.id, "resolve", actor=originator)

        with pytest.raises(ConflictError):
            approval_router.create_request(q.id, "otc", requested_by="Operations")

    def test_item_request_on_resolved_query_is_conflict(self, make_query, originator):
        q = make_query(items=["A", "B"])
        change_status(q.id, "approve", actor=originator)
        change_status(q.id, "resolve", actor=originator)

        with pytest.raises(ConflictError):
            approval_router.create_request(q.id, "deferral", requested_by="Operations", item_id=q.items[0].id)
        assert _pending_count(q.id, "deferral") == 0

    def test_item_request_must_be_valid_edge(self, make_query, originator):
        q = make_query(items=["A", "B"])
        first = q.items[0].id
        change_status(q.id, "approve", actor=originator, item_id=first)

        with pytest.raises(ConflictError):
            approval_router.create_request(q.id, "otc", requested_by="Operations", item_id=first)

        req = approval_router.create_request(q.id, "otc", requested_by="Operations", item_id=q.items[1].id)
        assert req.status == "pending"

    def test_query_request_must_be_valid_for_every_open_item(self, make_query, originator):
        q = make_query(items=["A", "B"])
        change_status(q.id, "otc", actor=originator, item_id=q.items[0].id)

        with pytest.raises(ConflictError):
            approval_router.create_request(q.id, "approve", requested_by="Operations")
        assert _messages(q.id, "request-approve") == []

    def test_unknown_query_is_not_found(self):
        with pytest.raises(NotFoundError):
            approval_router.create_request(999, "otc", requested_by="Operations")

    @pytest.mark.parametrize("request_type", ["", "escalate", None])
    def test_invalid_request_type(self, make_query, request_type):
        q = make_query()
        with pytest.raises(ValidationError):
            approval_router.create_request(q.id, request_type, requested_by="Operations")

    def test_requested_by_is_required(self, make_query):
        q = make_query()
        with pytest.raises(ValidationError):
            approval_router.create_request(q.id, "otc")

    def test_sales_cannot_request_approval(self, make_query, sales_user):
        q = make_query()
        with pytest.raises(ForbiddenError):
            approval_router.create_request(q.id, "otc", actor=sales_user)

    @pytest.mark.parametrize("request_type,text,expected", [
        ("otc", "Routine document check", "high"),
        ("approve", "URGENT: customer waiting at branch", "urgent"),
        ("deferral", "Needs an ASAP decision", "urgent"),
        ("deferral", "Routine document check", "low"),
        ("approve", "Routine document check", "medium"),
    ])
    def test_priority(self, make_query, request_type, text, expected):
        q = make_query(items=[text])
        req = approval_router.create_request(q.id, request_type, requested_by="Operations")
        assert req.priority == expected


# ── Decide: approve ──────────────────────────────────────────────────────────


class TestApprove:
    def test_deferral_approval_sets_query_deferred(self, make_query, authority):
        q1 = make_query()
        r1 = approval_router.create_request(q1.id, "deferral", requested_by="Operations", remarks="Awaiting ITR")

        outcome = approval_router.decide(r1.id, "approve", remarks="ok", actor=authority)

        assert outcome["decision"] == "approved"
        assert q1.status == "deferred"
        [msg] = _messages(q1.id, "approval")
        assert "APPROVED" in msg.message
        assert "Jane Doe" in msg.message
        assert "Approved on:" in msg.message
        assert msg.request_id == r1.id

    def test_replay_uses_composed_actor_and_remarks(self, make_query, authority):
        q = make_query()
        req = approval_router.create_request(q.id, "otc", requested_by="Operations", remarks="VIP customer")

        approval_router.decide(req.id, "approve", remarks="Cleared by CFO", actor=authority)

        item = q.items[0]
        assert item.status == "otc"
        assert item.resolved_by == "Jane Doe (via Operations)"
        assert "VIP customer" in item.remarks
        assert "Cleared by CFO" in item.remarks
        assert "[Management Approval]" in item.remarks

    def test_approval_writes_exactly_one_audit_message(self, make_query, authority):
        q = make_query()
        req = approval_router.create_request(q.id, "approve", requested_by="Operations")

        approval_router.decide(req.id, "approve", actor=authority)

        action_types = [m.action_type for m in _messages(q.id)]
        assert action_types == ["request-approve", "approval"]

    def test_request_marked_processed(self, make_query, authority):
        q = make_query()
        req = approval_router.create_request(q.id, "approve", requested_by="Operations")

        outcome = approval_router.decide(req.id, "approve", remarks="fine", actor=authority)

        assert req.status == "approved"
        assert req.processed_by == "Jane Doe"
        assert req.process_date is not None
        assert outcome["request"]["status"] == "approved"
        assert outcome["original_action_result"]["new_status"] == "approved"

    def test_item_targeted_request_only_moves_that_item(self, make_query, authority):
        q = make_query(items=["A", "B"])
        target = q.items[1]
        req = approval_router.create_request(q.id, "otc", requested_by="Operations", item_id=target.id)

        approval_router.decide(req.id, "approve", actor=authority)

        assert [i.status for i in q.items] == ["pending", "otc"]
        assert q.status == "pending"

    def test_failed_replay_rolls_back_everything(self, make_query, originator, authority):
        q = make_query()
        req = approval_router.create_request(q.id, "approve", requested_by="Operations")
        change_status(q.id, "otc", actor=originator)  # otc -> approved is not a valid edge

        with pytest.raises(ConflictError):
            approval_router.decide(req.id, "approve", actor=authority)

        db.session.expire_all()
        assert req.status == "pending"
        assert req.processed_by is None
        assert q.status == "otc"
        assert _messages(q.id, "approval") == []


# ── Decide: reject ───────────────────────────────────────────────────────────


class TestReject:
    def test_reject_leaves_status_and_logs_rejection(self, make_query, authority):
        q = make_query()
        req = approval_router.create_request(q.id, "otc", requested_by="Operations")

        outcome = approval_router.decide(req.id, "reject", remarks="Insufficient justification", actor=authority)

        assert outcome["decision"] == "rejected"
        assert "original_action_result" not in outcome
        assert q.status == "pending"
        assert req.status == "rejected"
        [msg] = _messages(q.id, "rejection")
        assert msg.rejection_reason == "Insufficient justification"
        assert "REJECTED" in msg.message

    def test_reject_default_reason(self, make_query, authority):
        q = make_query()
        req = approval_router.create_request(q.id, "deferral", requested_by="Operations")

        approval_router.decide(req.id, "reject", actor=authority)

        [msg] = _messages(q.id, "rejection")
        assert msg.rejection_reason == "No reason provided"


# ── Decide: guards ───────────────────────────────────────────────────────────


class TestDecideGuards:
    def test_unknown_request_is_not_found(self, authority):
        with pytest.raises(NotFoundError):
            approval_router.decide(404, "approve", actor=authority)

    def test_unknown_decision_is_validation(self, make_query, authority):
        q = make_query()
        req = approval_router.create_request(q.id, "otc", requested_by="Operations")
        with pytest.raises(ValidationError):
            approval_router.decide(req.id, "maybe", actor=authority)

    def test_second_decision_is_conflict(self, make_query, authority):
        q = make_query()
        req = approval_router.create_request(q.id, "otc", requested_by="Operations")
        approval_router.decide(req.id, "reject", actor=authority)

        with pytest.raises(ConflictError):
            approval_router.decide(req.id, "approve", actor=authority)
        assert q.status == "pending"

    def test_concurrent_decision_is_conflict(self, make_query, authority):
        q = make_query()
        req = approval_router.create_request(q.id, "otc", requested_by="Operations")
        assert req.status == "pending"
        # another writer decides it behind this session's back
        db.session.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == req.id)
            .values(status="rejected", processed_by="Someone else")
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConflictError):
            approval_router.decide(req.id, "approve", actor=authority)
        assert _messages(q.id, "approval") == []

    def test_non_authority_is_forbidden(self, make_query, originator):
        q = make_query()
        req = approval_router.create_request(q.id, "otc", requested_by="Operations")
        with pytest.raises(ForbiddenError):
            approval_router.decide(req.id, "approve", actor=originator)

    def test_restricted_authority_cannot_decide_other_types(self, make_query, otc_authority):
        q = make_query()
        req = approval_router.create_request(q.id, "deferral", requested_by="Operations")
        with pytest.raises(ForbiddenError):
            approval_router.decide(req.id, "approve", actor=otc_authority)

    def test_restricted_authority_decides_permitted_type(self, make_query, otc_authority):
        q = make_query()
        req = approval_router.create_request(q.id, "otc", requested_by="Operations")

        approval_router.decide(req.id, "approve", actor=otc_authority)

        assert q.status == "otc"
        assert q.items[0].resolved_by == "Vikram Rao (via Operations)"


# ── List ─────────────────────────────────────────────────────────────────────


class TestListRequests:
    def test_newest_first(self, make_query):
        q1 = make_query(app_no="GGN001")
        q2 = make_query(app_no="GGN002")
        first = approval_router.create_request(q1.id, "otc", requested_by="Operations")
        second = approval_router.create_request(q2.id, "approve", requested_by="Operations")

        ids = [r.id for r in approval_router.list_requests()]

        assert ids == [second.id, first.id]

    def test_restricted_authority_only_sees_permitted_types(self, make_query, otc_authority, authority):
        q = make_query()
        otc = approval_router.create_request(q.id, "otc", requested_by="Operations")
        approval_router.create_request(q.id, "deferral", requested_by="Operations")

        assert [r.id for r in approval_router.list_requests(actor=otc_authority)] == [otc.id]
        assert len(approval_router.list_requests(actor=authority)) == 2

    def test_filters_by_status_and_query(self, make_query, authority):
        q1 = make_query(app_no="GGN001")
        q2 = make_query(app_no="GGN002")
        r1 = approval_router.create_request(q1.id, "otc", requested_by="Operations")
        approval_router.create_request(q2.id, "otc", requested_by="Operations")
        approval_router.decide(r1.id, "reject", actor=authority)

        assert [r.id for r in approval_router.list_requests(status="rejected")] == [r1.id]
        assert len(approval_router.list_requests(status="all", query_id=q1.id)) == 1
        assert len(approval_router.list_requests(status="pending")) == 1

    def test_invalid_status_filter(self):
        with pytest.raises(ValidationError):
            approval_router.list_requests(status="open")
