"""
Branch assignment Blueprint.

Endpoints:
    GET    /api/v1/users/<user_id>/branch-assignments?team=
    POST   /api/v1/users/<user_id>/branch-assignments          (admin)
           Body: { "branch_id", "branch_code", "branch_name", "team" }
    POST   /api/v1/users/<user_id>/branch-assignments/accept
           Body: { "branch_id", "team" }
    POST   /api/v1/users/<user_id>/branch-assignments/decline
           Body: { "branch_id", "team" }
"""

import logging

from flask import Blueprint, request

from querydesk.blueprints import current_actor, json_body
from querydesk.services import branch_assignment_service
from querydesk.utils.errors import api_success

logger = logging.getLogger(__name__)

branch_bp = Blueprint("branch", __name__, url_prefix="/api/v1/users")


@branch_bp.route("/<user_id>/branch-assignments", methods=["GET"])
def list_assigned(user_id):
    assignments = branch_assignment_service.list_assigned(user_id, request.args.get("team"))
    message = None if assignments else "No branches assigned yet"
    return api_success([a.to_dict() for a in assignments], message=message)


@branch_bp.route("/<user_id>/branch-assignments", methods=["POST"])
def assign_branch(user_id):
    actor = current_actor()
    data = json_body()
    assignment = branch_assignment_service.assign(
        user_id,
        data.get("branch_id"),
        branch_code=data.get("branch_code"),
        branch_name=data.get("branch_name", ""),
        team=data.get("team"),
        actor=actor,
    )
    return api_success(assignment.to_dict(), status=201)


@branch_bp.route("/<user_id>/branch-assignments/accept", methods=["POST"])
def accept_branch(user_id):
    actor = current_actor()
    data = json_body()
    assignment = branch_assignment_service.accept(user_id, data.get("branch_id"), data.get("team"), actor=actor)
    return api_success(assignment.to_dict(), message=f"Branch {assignment.branch_code} accepted")


@branch_bp.route("/<user_id>/branch-assignments/decline", methods=["POST"])
def decline_branch(user_id):
    actor = current_actor()
    data = json_body()
    assignment = branch_assignment_service.decline(user_id, data.get("branch_id"), data.get("team"), actor=actor)
    return api_success(assignment.to_dict(), message=f"Branch {assignment.branch_code} declined")
