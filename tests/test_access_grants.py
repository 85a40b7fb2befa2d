"""
Tests: Access grant registry.

Grants re-widen a confidential item for named users.  Granting needs the
same authority as marking; duplicates return the active grant; revocation
is append-only and audited.
"""

from reporting_access.models.audit import AuditLog
from reporting_access.models.confidentiality import AccessGrant
from reporting_access.services import access_grant_service as grants
from reporting_access.services import confidentiality_service
from reporting_access.utils.errors import E


def test_grant_creates_active_grant(org):
    grant, err = grants.grant_access("report", 1, org.fin_a1, org.member_b, org.head_a1, reason="Reviewer")
    assert err is None
    assert grant["created"] is True
    assert grant["granted_to_user_id"] == org.member_b
    assert grant["granted_by_user_id"] == org.head_a1
    assert grants.active_grant_user_ids("report", 1) == {org.member_b}


def test_duplicate_grant_returns_existing(org):
    first, _ = grants.grant_access("report", 1, org.fin_a1, org.member_b, org.admin)
    second, err = grants.grant_access("report", 1, org.fin_a1, org.member_b, org.head_a1)
    assert err is None
    assert second["created"] is False
    assert second["id"] == first["id"]
    assert AccessGrant.query.count() == 1


def test_member_cannot_grant(org):
    _, err = grants.grant_access("report", 1, org.fin_a1, org.member_b, org.member_a1)
    assert err["code"] == E.AUTHORIZATION_DENIED


def test_grant_to_unknown_user_is_not_found(org):
    _, err = grants.grant_access("report", 1, org.fin_a1, 999_999, org.admin)
    assert err["code"] == E.NOT_FOUND


def test_grant_without_committee_is_unresolvable(org):
    _, err = grants.grant_access("report", 1, None, org.member_b, org.admin)
    assert err["code"] == E.ITEM_COMMITTEE_UNRESOLVABLE


def test_revoke_deactivates_and_audits(org):
    grant, _ = grants.grant_access("report", 1, org.fin_a1, org.member_b, org.admin)
    revoked, err = grants.revoke_access(grant["id"], org.head_a1, org.fin_a1)

    assert err is None
    assert revoked["is_active"] is False
    assert revoked["revoked_by_user_id"] == org.head_a1
    assert grants.active_grant_user_ids("report", 1) == set()
    assert AuditLog.query.filter_by(action="access_grant.revoke").count() == 1


def test_revoke_twice_is_not_found(org):
    grant, _ = grants.grant_access("report", 1, org.fin_a1, org.member_b, org.admin)
    grants.revoke_access(grant["id"], org.admin, org.fin_a1)
    _, err = grants.revoke_access(grant["id"], org.admin, org.fin_a1)
    assert err["code"] == E.NOT_FOUND


def test_revoke_unknown_grant_is_not_found(org):
    _, err = grants.revoke_access(12345, org.admin, org.fin_a1)
    assert err["code"] == E.NOT_FOUND


def test_revoke_needs_mark_authority(org):
    grant, _ = grants.grant_access("report", 1, org.fin_a1, org.member_b, org.admin)
    _, err = grants.revoke_access(grant["id"], org.member_a1, org.fin_a1)
    assert err["code"] == E.AUTHORIZATION_DENIED
    assert grants.active_grant_user_ids("report", 1) == {org.member_b}


def test_history_includes_revoked_grants(org):
    grant, _ = grants.grant_access("report", 1, org.fin_a1, org.member_b, org.admin)
    grants.revoke_access(grant["id"], org.admin, org.fin_a1)
    grants.grant_access("report", 1, org.fin_a1, org.member_b, org.admin)

    assert len(grants.get_access_grants("report", 1)) == 1
    history = grants.get_access_grants("report", 1, include_revoked=True)
    assert [g["is_active"] for g in history] == [False, True]


def test_grants_survive_unmark_and_remark(org):
    confidentiality_service.mark("report", 1, org.fin_a1, org.admin)
    grants.grant_access("report", 1, org.fin_a1, org.member_b, org.admin)
    confidentiality_service.unmark("report", 1, org.admin)
    confidentiality_service.mark("report", 1, org.fin_a1, org.admin)
    assert grants.active_grant_user_ids("report", 1) == {org.member_b}


def test_bulk_grantee_lookup(org):
    grants.grant_access("report", 1, org.fin_a1, org.member_b, org.admin)
    grants.grant_access("directive", 2, org.fin_a1, org.member_b2, org.admin)
    found = grants.active_grant_user_ids_for([("report", 1), ("directive", 2), ("meeting", 3)])
    assert found == {("report", 1): {org.member_b}, ("directive", 2): {org.member_b2}}


def test_grant_records_item_committee(org):
    grant, _ = grants.grant_access("report", 9, org.dir_b, org.member_a1, org.admin)
    assert grant["committee_id"] == org.dir_b


def test_revoke_checks_stored_committee_not_caller_committee(org):
    grant, _ = grants.grant_access("report", 9, org.dir_b, org.member_a1, org.admin)

    _, err = grants.revoke_access(grant["id"], org.head_a1, org.fin_a1)
    assert err["code"] == E.VALIDATION_INVALID

    _, err = grants.revoke_access(grant["id"], org.head_a1)
    assert err["code"] == E.AUTHORIZATION_DENIED
    assert grants.active_grant_user_ids("report", 9) == {org.member_a1}


def test_revoke_without_committee_by_head_of_item_committee(org):
    grant, _ = grants.grant_access("report", 1, org.fin_a1, org.member_b, org.admin)
    revoked, err = grants.revoke_access(grant["id"], org.head_a)
    assert err is None
    assert revoked["is_active"] is False


def test_grant_on_marked_item_must_match_marking_committee(org):
    confidentiality_service.mark("report", 9, org.dir_b, org.admin)
    _, err = grants.grant_access("report", 9, org.fin_a1, org.member_a1, org.head_a1)
    assert err["code"] == E.VALIDATION_INVALID
    assert err["details"] == {"marked_committee_id": org.dir_b}
    assert grants.active_grant_user_ids("report", 9) == set()
