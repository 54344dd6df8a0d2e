"""
Team visibility tests: the routing rule, capability lookup, per-item
annotation and the branch-scoped dashboard listing.
"""

import pytest

from querydesk.services import branch_assignment_service, query_service, visibility
from querydesk.services.visibility import Role, allows_messaging


class TestRoutingRule:
    @pytest.mark.parametrize("marked,team,expected", [
        ("sales", "sales", True),
        ("credit", "sales", False),
        ("both", "sales", True),
        ("sales", "credit", False),
        ("credit", "credit", True),
        ("both", "credit", True),
        ("credit", None, True),
        ("SALES", " Sales ", True),
    ])
    def test_allows_messaging(self, marked, team, expected):
        assert allows_messaging(marked, team) is expected


class TestCapabilities:
    @pytest.mark.parametrize("role,action,expected", [
        (Role.ORIGINATOR, "create_query", True),
        (Role.ORIGINATOR, "request_approval", True),
        (Role.ORIGINATOR, "decide_approval", False),
        (Role.SALES, "change_status", True),
        (Role.SALES, "create_query", False),
        (Role.CREDIT, "revert", True),
        (Role.AUTHORITY, "decide_approval", True),
        (Role.AUTHORITY, "revert", False),
        (Role.ADMIN, "assign_branch", True),
        (Role.ADMIN, "chat", False),
    ])
    def test_role_actions(self, role, action, expected):
        assert visibility.get_capability(role).can_act(action) is expected

    def test_only_downstream_roles_are_branch_scoped(self):
        scoped = {role for role in Role if visibility.get_capability(role).branch_scoped}
        assert scoped == {Role.SALES, Role.CREDIT}

    def test_actor_team_names(self, originator, authority):
        assert originator.team == "Operations"
        assert authority.team == "Management"


class TestAnnotateQuery:
    def test_application_listing_for_sales(self, make_query):
        make_query(app_no="A1", items=[
            {"text": "Salary slips", "marked_for_team": "sales"},
            {"text": "Bank statement", "marked_for_team": "credit"},
        ])

        [data] = query_service.list_queries_for_app("A1", team="sales")

        assert [i["allow_messaging"] for i in data["items"]] == [True, False]
        assert data["allow_messaging"] is True

    def test_no_team_allows_everything(self, make_query):
        q = make_query(team="credit")
        data = visibility.annotate_query(q)
        assert data["allow_messaging"] is True

    def test_query_level_flag_false_when_nothing_routed(self, make_query):
        q = make_query(team="credit")
        data = visibility.annotate_query(q, "sales")
        assert data["allow_messaging"] is False


class TestDashboard:
    def _accept(self, user_id, team, branch_id="BR-GGN", code="GGN"):
        branch_assignment_service.assign(user_id, branch_id, branch_code=code, team=team)
        branch_assignment_service.accept(user_id, branch_id, team)

    def test_originator_sees_every_branch(self, make_query, originator):
        make_query(app_no="A1", branch_code="GGN")
        make_query(app_no="A2", branch_code="DEL")

        listing = query_service.list_queries_for_actor(originator)

        assert {q["app_no"] for q in listing.queries} == {"A1", "A2"}
        assert listing.message is None

    def test_downstream_without_branch_soft_fails(self, make_query, sales_user):
        make_query()

        listing = query_service.list_queries_for_actor(sales_user)

        assert listing.queries == []
        assert "No branch accepted" in listing.message

    def test_sales_sees_only_routed_items_on_own_branch(self, make_query, sales_user):
        self._accept("SAL001", "sales")
        make_query(app_no="A1", items=[
            {"text": "Salary slips", "marked_for_team": "sales"},
            {"text": "Bank statement", "marked_for_team": "credit"},
        ])
        make_query(app_no="A2", team="credit")
        make_query(app_no="A3", team="sales", branch_code="DEL")

        listing = query_service.list_queries_for_actor(sales_user)

        [data] = listing.queries
        assert data["app_no"] == "A1"
        assert [i["text"] for i in data["items"]] == ["Salary slips"]

    def test_credit_empty_branch_message(self, make_query, credit_user):
        self._accept("CRD001", "credit", branch_id="BR-DEL", code="DEL")
        make_query(team="credit", branch_code="GGN")

        listing = query_service.list_queries_for_actor(credit_user)

        assert listing.queries == []
        assert listing.message == "No queries found for branch DEL"

    def test_status_filter(self, make_query, originator):
        from querydesk.services.query_lifecycle import change_status

        q1 = make_query(app_no="A1")
        make_query(app_no="A2")
        change_status(q1.id, "approve", actor=originator)

        listing = query_service.list_queries_for_actor(originator, status="approved")

        assert [q["app_no"] for q in listing.queries] == ["A1"]
