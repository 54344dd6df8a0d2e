"""
Approval routing Blueprint.

Routes:
  POST   /api/v1/approval-requests                 – file a request (originator)
  GET    /api/v1/approval-requests?status=&query_id= – list, newest first
  POST   /api/v1/approval-requests/<rid>/decide    – approve / reject (authority)

A request that was already decided returns 409.
"""

from flask import Blueprint, request

from querydesk.blueprints import current_actor, json_body, optional_int
from querydesk.services import approval_router
from querydesk.utils.errors import api_success

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1")


@approval_bp.route("/approval-requests", methods=["POST"])
def create_request():
    """File a request for Management sign-off.

    Body: { query_id, request_type: approve|deferral|otc, item_id?, assigned_to?, remarks? }
    """
    actor = current_actor()
    data = json_body()
    req = approval_router.create_request(
        optional_int(data.get("query_id"), "query_id"),
        data.get("request_type"),
        requested_by=data.get("requested_by"),
        assigned_to=data.get("assigned_to"),
        remarks=data.get("remarks"),
        item_id=optional_int(data.get("item_id"), "item_id"),
        actor=actor,
    )
    return api_success(req.to_dict(), status=201, message=f"{req.request_type} request sent to Management")


@approval_bp.route("/approval-requests", methods=["GET"])
def list_requests():
    actor = current_actor()
    requests = approval_router.list_requests(
        status=request.args.get("status", "pending"),
        query_id=optional_int(request.args.get("query_id"), "query_id"),
        actor=actor,
    )
    return api_success([r.to_dict() for r in requests])


@approval_bp.route("/approval-requests/<int:rid>/decide", methods=["POST"])
def decide_request(rid):
    """Approve or reject a pending request.

    Body: { decision: approve|reject, remarks? }
    """
    actor = current_actor()
    data = json_body()
    outcome = approval_router.decide(rid, data.get("decision"), actor=actor, remarks=data.get("remarks"))
    return api_success(outcome, message=outcome["message"])
