"""Tests for the audit trail readers, retention cleanup and role permissions."""

import csv
import io
from datetime import timedelta

import pytest

from app.audit import trail as audit
from app.core.constants import UserRole
from app.db.models.base import utcnow
from app.validation.permissions import Permission, has_permission


async def _record_many(db, count, *, actor_id="user-1", action="TENDER_VIEWED", entity_id="t-1"):
    entries = []
    for _ in range(count):
        entries.append(await audit.record_tender_event(db, tender_id=entity_id, action=action, actor_id=actor_id))
    return entries


class TestQuery:

    async def test_paging_and_filters(self, db):
        await _record_many(db, 3)
        await _record_many(db, 2, actor_id="user-2", action="TENDER_REJECTED", entity_id="t-2")

        first = await audit.query(db, limit=2)
        assert first.total == 5
        assert len(first.entries) == 2
        assert first.has_more

        last = await audit.query(db, offset=4, limit=2)
        assert len(last.entries) == 1
        assert last.to_dict()["hasMore"] is False

        rejected = await audit.query(db, action="TENDER_REJECTED")
        assert rejected.total == 2
        assert {e.actor_id for e in rejected.entries} == {"user-2"}

    async def test_actor_defaults_to_system(self, db):
        entry = await audit.record_run_event(db, run_id="r-1", action="RUN_STARTED", before="PENDING", after="RUNNING")

        assert entry.actor_id == "system"
        assert entry.diff == {"kind": "status", "before": "PENDING", "after": "RUNNING"}

    async def test_entity_history_is_oldest_first(self, db):
        created = await _record_many(db, 3, entity_id="t-9")
        await _record_many(db, 1, entity_id="other")

        history = await audit.entity_history(db, "tender", "t-9")

        assert [e.id for e in history] == [e.id for e in created]

    async def test_user_activity(self, db):
        await _record_many(db, 2, actor_id="user-7")
        await _record_many(db, 1, actor_id="user-8")

        activity = await audit.user_activity(db, "user-7")
        assert len(activity) == 2


class TestExport:

    async def test_csv_export(self, db):
        await audit.record_config_event(db, pipeline_name="phase1-mvp", action="PIPELINE_CREATED", after={"name": "phase1-mvp"})
        await _record_many(db, 2)

        rows = list(csv.reader(io.StringIO(await audit.export_csv(db))))

        assert rows[0] == ["at", "actorId", "action", "entity", "entityId", "diff"]
        assert len(rows) == 4
        assert rows[1][2:5] == ["PIPELINE_CREATED", "pipeline", "phase1-mvp"]
        assert rows[1][5] == '{"after":{"name":"phase1-mvp"},"before":null,"kind":"config"}'

    async def test_csv_export_filters(self, db):
        await _record_many(db, 2, actor_id="user-1")
        await _record_many(db, 3, actor_id="user-2")

        text = await audit.export_csv(db, actor_id="user-2")

        assert len(text.strip().splitlines()) == 4


class TestRetention:

    async def test_cleanup_deletes_old_entries_and_audits_itself(self, db):
        old = await _record_many(db, 2)
        await _record_many(db, 1)
        for entry in old:
            entry.created_at = utcnow() - timedelta(days=400)
        await db.flush()

        deleted = await audit.cleanup(db, retention_days=365)

        assert deleted == 2
        remaining = await audit.query(db)
        assert remaining.total == 2
        marker = (await audit.query(db, action="AUDIT_CLEANUP")).entries[0]
        assert marker.diff["payload"]["deleted"] == 2
        assert marker.diff["payload"]["retentionDays"] == 365

    async def test_cleanup_with_nothing_to_delete(self, db):
        await _record_many(db, 1)
        assert await audit.cleanup(db) == 0


class TestSuspiciousActivity:

    async def test_quiet_user(self, db):
        await _record_many(db, 3, actor_id="user-1")

        report = await audit.detect_suspicious_activity(db, "user-1")

        assert report == {
            "userId": "user-1",
            "suspicious": False,
            "reasons": [],
            "actionCounts": {"TENDER_VIEWED": 3},
        }

    async def test_repeated_rejections(self, db):
        await _record_many(db, 5, actor_id="user-1", action="TENDER_REJECTED")

        report = await audit.detect_suspicious_activity(db, "user-1")

        assert report["suspicious"] is True
        assert report["reasons"] == ["5 rejections in 1h"]

    async def test_old_activity_is_outside_the_window(self, db):
        entries = await _record_many(db, 5, actor_id="user-1", action="TENDER_REJECTED")
        for entry in entries:
            entry.created_at = utcnow() - timedelta(hours=3)
        await db.flush()

        report = await audit.detect_suspicious_activity(db, "user-1")
        assert report["suspicious"] is False


class TestPermissions:

    @pytest.mark.parametrize("role, permission, allowed", [
        (UserRole.ANALYST, Permission.PIPELINE_RUN, True),
        (UserRole.ANALYST, Permission.TENDER_APPROVE, False),
        (UserRole.ANALYST, Permission.PIPELINE_MANAGE, False),
        (UserRole.REVIEWER, Permission.TENDER_APPROVE, True),
        (UserRole.REVIEWER, Permission.AUDIT_EXPORT, False),
        (UserRole.ADMIN, Permission.AUDIT_EXPORT, True),
        (UserRole.ADMIN, Permission.PIPELINE_MANAGE, True),
        ("AUDITOR", Permission.TENDER_READ, False),
        (None, Permission.TENDER_READ, False),
        (UserRole.ADMIN, "tender:delete", False),
    ])
    def test_role_table(self, role, permission, allowed):
        assert has_permission(role, permission) is allowed
