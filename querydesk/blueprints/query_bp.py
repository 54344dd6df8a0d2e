"""
Query Blueprint: raise, list and transition loan queries.

Endpoints:
    POST   /api/v1/queries
           Body: { "app_no", "customer_name", "branch", "branch_code",
                   "sub_queries": ["text" | {"text", "marked_for_team"}],
                   "marked_for_team": "sales|credit|both", "priority" }
           Returns: 201 with the new query.

    GET    /api/v1/queries?status=
           Dashboard for the acting user (branch scoped for Sales/Credit).

    GET    /api/v1/queries/stats
    GET    /api/v1/queries/<id>

    GET    /api/v1/applications/<app_no>/queries?team=
           Newest first, with allow_messaging per sub-query for ``team``.

    POST   /api/v1/queries/<id>/status
           Body: { "new_status": "approve|deferral|otc|resolve|revert|<status>",
                   "remarks", "item_id", "assigned_to" }

Layer contract:
    - Blueprint: parse input, resolve the actor, call the service.
    - NO db.session calls here; services own every commit.
"""

import logging

from flask import Blueprint, request

from querydesk.blueprints import current_actor, json_body, optional_int
from querydesk.services import query_lifecycle, query_service, visibility
from querydesk.utils.errors import api_success

logger = logging.getLogger(__name__)

query_bp = Blueprint("query", __name__, url_prefix="/api/v1")


@query_bp.route("/queries", methods=["POST"])
def create_query():
    actor = current_actor()
    data = json_body()
    query = query_service.create_query(
        data.get("app_no"),
        data.get("sub_queries"),
        customer_name=data.get("customer_name", ""),
        branch=data.get("branch", ""),
        branch_code=data.get("branch_code", ""),
        marked_for_team=data.get("marked_for_team", "both"),
        priority=data.get("priority", "medium"),
        actor=actor,
    )
    return api_success(visibility.annotate_query(query), status=201, message="Query created")


@query_bp.route("/queries", methods=["GET"])
def list_queries():
    actor = current_actor()
    listing = query_service.list_queries_for_actor(actor, status=request.args.get("status"))
    return api_success(listing.queries, message=listing.message)


@query_bp.route("/queries/stats", methods=["GET"])
def query_stats():
    return api_success(query_service.query_stats())


@query_bp.route("/queries/<int:query_id>", methods=["GET"])
def get_query(query_id):
    query = query_service.get_query(query_id)
    return api_success(visibility.annotate_query(query, request.args.get("team")))


@query_bp.route("/applications/<app_no>/queries", methods=["GET"])
def list_queries_for_app(app_no):
    queries = query_service.list_queries_for_app(app_no, request.args.get("team"))
    message = None if queries else f"No queries found for application {app_no}"
    return api_success(queries, message=message)


@query_bp.route("/queries/<int:query_id>/status", methods=["POST"])
def change_status(query_id):
    actor = current_actor()
    data = json_body()
    result = query_lifecycle.change_status(
        query_id,
        data.get("new_status") or data.get("action"),
        actor=actor,
        remarks=data.get("remarks"),
        item_id=optional_int(data.get("item_id"), "item_id"),
        assigned_to=data.get("assigned_to"),
    )
    return api_success(
        visibility.annotate_query(result.query),
        message=result.message,
        result=result.to_dict(),
    )
