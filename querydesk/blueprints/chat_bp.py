"""
Chat Blueprint: per-query message log.

Endpoints:
    POST   /api/v1/queries/<id>/chat          Body: { "message" }
    GET    /api/v1/queries/<id>/chat          oldest first
    GET    /api/v1/messages/latest?team=&hours=
"""

from flask import Blueprint, current_app, request

from querydesk.blueprints import current_actor, json_body, optional_int
from querydesk.services import chat_service
from querydesk.utils.errors import api_success

chat_bp = Blueprint("chat", __name__, url_prefix="/api/v1")


@chat_bp.route("/queries/<int:query_id>/chat", methods=["POST"])
def post_message(query_id):
    actor = current_actor()
    data = json_body()
    entry = chat_service.append_message(query_id, data.get("message"), actor=actor)
    return api_success(entry.to_dict(), status=201)


@chat_bp.route("/queries/<int:query_id>/chat", methods=["GET"])
def list_messages(query_id):
    messages = chat_service.list_messages(query_id)
    return api_success([m.to_dict() for m in messages])


@chat_bp.route("/messages/latest", methods=["GET"])
def latest_messages():
    hours = optional_int(request.args.get("hours"), "hours") or current_app.config["LATEST_MESSAGES_HOURS"]
    messages = chat_service.latest_messages(team=request.args.get("team"), hours=hours)
    return api_success([m.to_dict() for m in messages])
