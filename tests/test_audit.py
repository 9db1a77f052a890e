"""
Audit trail tests:
  - write_audit accepts the known vocabulary and flushes without committing
  - unknown entity types and actions are refused
"""

import pytest

from app.models import db as _db
from app.models.audit import AUDIT_ACTIONS, AUDIT_ENTITY_TYPES, AuditLog, write_audit


class TestWriteAudit:
    def test_known_action_is_flushed(self):
        log = write_audit(entity_type="incident", entity_id=7, action="incident.unpublish",
                          diff={"reason": "typo"})
        assert log.id is not None
        assert log.entity_id == "7"
        assert log.diff == {"reason": "typo"}
        _db.session.rollback()
        assert AuditLog.query.count() == 0

    def test_unknown_entity_type_refused(self):
        with pytest.raises(ValueError, match="entity type"):
            write_audit(entity_type="statement", entity_id=1, action="record.create")

    def test_unknown_action_refused(self):
        with pytest.raises(ValueError, match="action"):
            write_audit(entity_type="record", entity_id=1, action="record.archive")

    def test_every_action_belongs_to_a_known_entity(self):
        assert {a.split(".", 1)[0] for a in AUDIT_ACTIONS} <= AUDIT_ENTITY_TYPES
