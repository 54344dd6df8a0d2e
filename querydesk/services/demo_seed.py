"""
Demo data for local development (``flask seed-demo``).

Creates one user per role, branch assignments for the Sales and Credit
users and a handful of queries for applications GGN001..GGN005. Running it
twice does not duplicate anything.
"""

import logging

from sqlalchemy import select

from querydesk.models import db
from querydesk.models.branch import BranchAssignment
from querydesk.models.query import Query
from querydesk.models.user import User
from querydesk.services import branch_assignment_service, query_service, user_directory

logger = logging.getLogger(__name__)

DEMO_USERS = [
    ("OPS001", "Asha Verma", "originator", None),
    ("SAL001", "Ravi Kumar", "sales", None),
    ("CRD001", "Neha Singh", "credit", None),
    ("MGT001", "Jane Doe", "authority", None),
    ("MGT002", "Vikram Rao", "authority", ["approve_otc_queries"]),
    ("ADM001", "Platform Admin", "admin", None),
]

DEMO_BRANCHES = [
    # user, branch_id, code, name, team, accept
    ("SAL001", "BR-GGN", "GGN", "Gurugram", "sales", True),
    ("SAL001", "BR-DEL", "DEL", "Delhi", "sales", False),
    ("CRD001", "BR-GGN", "GGN", "Gurugram", "credit", True),
]

DEMO_QUERIES = [
    ("GGN001", "Rahul Mehta", "both", ["Upload latest salary slips", "Confirm current address"]),
    ("GGN002", "Priya Shah", "sales", ["Customer contact number is unreachable"]),
    ("GGN003", "Amit Gupta", "credit", ["Bank statement shows bounced EMI, urgent clarification needed"]),
    ("GGN004", "Sunita Rao", "both", ["Property papers missing page 3"]),
    ("GGN005", "Karan Malhotra", "credit", ["Co-applicant income proof required"]),
]


def seed_demo() -> dict:
    counts = {"users": 0, "branch_assignments": 0, "queries": 0}

    for employee_id, name, role, permissions in DEMO_USERS:
        if db.session.execute(select(User.id).where(User.employee_id == employee_id)).scalar_one_or_none():
            continue
        user_directory.create_user(employee_id, name, role, permissions=permissions)
        counts["users"] += 1

    for user_id, branch_id, code, name, team, accept in DEMO_BRANCHES:
        exists = db.session.execute(
            select(BranchAssignment.id).where(
                BranchAssignment.user_id == user_id,
                BranchAssignment.branch_id == branch_id,
                BranchAssignment.team == team,
            )
        ).scalar_one_or_none()
        if exists:
            continue
        branch_assignment_service.assign(
            user_id, branch_id, branch_code=code, branch_name=name, team=team, marked_by="ADM001",
        )
        if accept:
            branch_assignment_service.accept(user_id, branch_id, team)
        counts["branch_assignments"] += 1

    originator = user_directory.resolve_actor("OPS001")
    for app_no, customer, team, texts in DEMO_QUERIES:
        if db.session.execute(select(Query.id).where(Query.app_no == app_no)).first():
            continue
        query_service.create_query(
            app_no,
            texts,
            customer_name=customer,
            branch="Gurugram",
            branch_code="GGN",
            marked_for_team=team,
            actor=originator,
        )
        counts["queries"] += 1

    logger.info("Demo seed complete: %s", counts)
    return counts
