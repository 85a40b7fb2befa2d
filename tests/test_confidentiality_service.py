"""
Tests: Confidentiality marking store.

Covers precondition order, mark authority, idempotent marking, the
one-active-marking invariant (including the database-level partial unique
index), unmark permissions and the marking history timeline.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from reporting_access.models import db as _db
from reporting_access.models.audit import AuditLog
from reporting_access.models.confidentiality import ConfidentialityMarking
from reporting_access.services import confidentiality_service as svc
from reporting_access.utils.errors import E


def _active_count(item_type="report", item_id=1) -> int:
    return ConfidentialityMarking.query.filter_by(
        item_type=item_type, item_id=item_id, is_active=True,
    ).count()


# ═════════════════════════════════════════════════════════════════════════════
# Mark
# ═════════════════════════════════════════════════════════════════════════════


class TestMark:
    def test_head_marks_item_in_own_committee(self, org):
        marking, err = svc.mark("report", 1, org.fin_a1, org.head_a1, reason="Pending audit")
        assert err is None
        assert marking["created"] is True
        assert marking["is_active"] is True
        assert marking["committee_id"] == org.fin_a1
        assert marking["committee_level"] == 2
        assert marking["reason"] == "Pending audit"

    def test_invalid_item_type_rejected_first(self, org):
        _, err = svc.mark("memo", 1, None, org.admin)
        assert err["code"] == E.VALIDATION_INVALID
        assert err["status"] == 400

    def test_unresolvable_committee(self, org):
        _, err = svc.mark("report", 1, None, org.admin)
        assert err["code"] == E.ITEM_COMMITTEE_UNRESOLVABLE
        assert err["status"] == 422

    def test_unknown_committee_is_not_found(self, org):
        _, err = svc.mark("report", 1, 999_999, org.admin)
        assert err["code"] == E.NOT_FOUND

    def test_unknown_marker_is_not_found(self, org):
        _, err = svc.mark("report", 1, org.fin_a1, 999_999)
        assert err["code"] == E.NOT_FOUND

    def test_member_cannot_mark(self, org):
        _, err = svc.mark("report", 1, org.fin_a1, org.member_a1)
        assert err["code"] == E.AUTHORIZATION_DENIED
        assert err["status"] == 403
        assert _active_count() == 0

    def test_head_cannot_mark_outside_subtree(self, org):
        _, err = svc.mark("report", 1, org.dir_b, org.head_a)
        assert err["code"] == E.AUTHORIZATION_DENIED

    def test_reason_too_long_rejected(self, org):
        _, err = svc.mark("report", 1, org.fin_a1, org.admin, reason="x" * 501)
        assert err["code"] == E.VALIDATION_INVALID

    def test_mark_twice_is_idempotent(self, org):
        first, _ = svc.mark("report", 1, org.fin_a1, org.admin)
        second, err = svc.mark("report", 1, org.fin_a1, org.head_a1, reason="again")

        assert err is None
        assert second["created"] is False
        assert second["id"] == first["id"]
        assert second["marked_by_user_id"] == org.admin
        assert _active_count() == 1
        assert len(svc.get_marking_history("report", 1)) == 1

    def test_mark_is_audited_once(self, org):
        svc.mark("report", 1, org.fin_a1, org.admin)
        svc.mark("report", 1, org.fin_a1, org.admin)
        rows = AuditLog.query.filter_by(action="confidentiality.mark").all()
        assert len(rows) == 1
        assert rows[0].actor_user_id == org.admin
        assert rows[0].diff["item_id"] == 1

    def test_same_item_id_different_type_is_independent(self, org):
        svc.mark("report", 1, org.fin_a1, org.admin)
        marking, _ = svc.mark("meeting", 1, org.fin_a1, org.admin)
        assert marking["created"] is True


class TestActiveMarkingInvariant:
    def test_partial_unique_index_rejects_second_active_row(self, org):
        svc.mark("report", 1, org.fin_a1, org.admin)
        _db.session.add(ConfidentialityMarking(
            item_type="report", item_id=1, committee_id=org.fin_a1,
            marked_by_user_id=org.admin, is_active=True,
        ))
        with pytest.raises(IntegrityError):
            _db.session.commit()
        _db.session.rollback()
        assert _active_count() == 1

    def test_revoked_rows_do_not_block_a_new_marking(self, org):
        svc.mark("report", 1, org.fin_a1, org.admin)
        svc.unmark("report", 1, org.admin)
        marking, err = svc.mark("report", 1, org.fin_a1, org.admin)
        assert err is None
        assert marking["created"] is True
        assert _active_count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# Unmark
# ═════════════════════════════════════════════════════════════════════════════


class TestUnmark:
    def test_marker_can_unmark(self, org):
        svc.mark("report", 1, org.fin_a1, org.head_a1)
        marking, err = svc.unmark("report", 1, org.head_a1)
        assert err is None
        assert marking["is_active"] is False
        assert marking["revoked_at"] is not None
        assert marking["revoked_by_user_id"] == org.head_a1
        assert svc.get_active_marking("report", 1) is None

    def test_admin_can_unmark_someone_elses_marking(self, org):
        svc.mark("report", 1, org.fin_a1, org.head_a1)
        _, err = svc.unmark("report", 1, org.admin)
        assert err is None

    def test_other_head_cannot_unmark(self, org):
        svc.mark("report", 1, org.fin_a1, org.head_a1)
        _, err = svc.unmark("report", 1, org.head_a)
        assert err["code"] == E.AUTHORIZATION_DENIED
        assert "original marker or an administrator" in err["error"]
        assert svc.get_active_marking("report", 1) is not None

    def test_chairman_is_not_an_unmark_override(self, org):
        svc.mark("report", 1, org.fin_a1, org.head_a1)
        _, err = svc.unmark("report", 1, org.chairman)
        assert err["code"] == E.AUTHORIZATION_DENIED

    def test_unmark_without_active_marking_is_not_found(self, org):
        _, err = svc.unmark("report", 1, org.admin)
        assert err["code"] == E.NOT_FOUND
        assert err["status"] == 404

    def test_unmark_is_audited(self, org):
        svc.mark("report", 1, org.fin_a1, org.admin)
        svc.unmark("report", 1, org.admin)
        row = AuditLog.query.filter_by(action="confidentiality.unmark").one()
        assert row.entity_type == "confidentiality_marking"
        assert row.diff["is_active"] == {"old": True, "new": False}


# ═════════════════════════════════════════════════════════════════════════════
# History
# ═════════════════════════════════════════════════════════════════════════════


class TestHistory:
    def test_round_trip_leaves_two_history_entries(self, org):
        svc.mark("report", 1, org.fin_a1, org.admin)
        svc.unmark("report", 1, org.admin)
        svc.mark("report", 1, org.fin_a1, org.admin, min_chairman_office_rank=2)
        svc.unmark("report", 1, org.admin)

        history = svc.get_marking_history("report", 1)
        assert len(history) == 2
        assert [h["is_active"] for h in history] == [False, False]
        assert history[0]["min_chairman_office_rank"] is None
        assert history[1]["min_chairman_office_rank"] == 2
        assert svc.get_active_marking("report", 1) is None

    def test_history_is_oldest_first_and_includes_active(self, org):
        svc.mark("report", 1, org.fin_a1, org.admin)
        svc.unmark("report", 1, org.admin)
        svc.mark("report", 1, org.fin_a1, org.head_a1)

        history = svc.get_marking_history("report", 1)
        assert [h["marked_by_user_id"] for h in history] == [org.admin, org.head_a1]
        assert history[-1]["is_active"] is True

    def test_history_of_unmarked_item_is_empty(self, org):
        assert svc.get_marking_history("directive", 5) == []
