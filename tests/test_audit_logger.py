"""
Tests for the audit trail writer and settings helpers.
"""

import logging

import pytest

from recordmatch.config import Settings
from recordmatch.logging_config import resolve_log_level, use_json_renderer
from recordmatch.models import AuditAction
from recordmatch.utils import AuditLogger

from .conftest import TENANT


class TestAuditLogger:

    @pytest.mark.asyncio
    async def test_record_appends_to_sink(self, audit_sink):
        audit = AuditLogger(audit_sink)

        entry = await audit.record(
            AuditAction.RESOLVE_DEDUPLICATION,
            tenant_id=TENANT,
            actor="reviewer",
            entity_type="DuplicateFinding",
            entity_id="f1",
            before={"status": "POTENTIAL_DUPLICATE"},
            after={"status": "NOT_DUPLICATE"},
        )

        assert audit_sink.entries == [entry]
        assert entry.before == {"status": "POTENTIAL_DUPLICATE"}
        assert entry.success

    @pytest.mark.asyncio
    async def test_failures_are_recorded_without_local_copy(self, audit_sink):
        audit = AuditLogger(audit_sink)
        await audit.record(AuditAction.MERGE_DUPLICATES, TENANT, "reviewer", "DuplicateFinding", "f1")
        await audit.record(
            AuditAction.MERGE_DUPLICATES, TENANT, "reviewer", "DuplicateFinding", "f2",
            success=False, error_message="deactivate merged record: boom",
        )

        assert [e.success for e in audit_sink.entries] == [True, False]
        assert audit_sink.entries[1].error_message == "deactivate merged record: boom"
        assert not hasattr(audit, "entries")


class TestSettings:

    def test_default_tolerance(self):
        tolerance = Settings(amount_tolerance_cents=250).default_tolerance()
        assert tolerance.amount_tolerance_cents == 250
        assert tolerance.percentage_tolerance == 0.01

    @pytest.mark.parametrize("requested,expected", [(0, 20), (50, 50), (500, 100)])
    def test_page_size_is_clamped(self, requested, expected):
        assert Settings().clamp_page_size(requested) == expected

    def test_debug_forces_debug_level(self):
        assert resolve_log_level(Settings(app_log_level="WARNING")) == logging.WARNING
        assert resolve_log_level(Settings(app_log_level="WARNING", app_debug=True)) == logging.DEBUG

    @pytest.mark.parametrize("app_env,log_json,expected", [
        ("development", False, False),
        ("development", True, True),
        ("production", False, True),
    ])
    def test_json_rendering(self, app_env, log_json, expected):
        assert use_json_renderer(Settings(app_env=app_env, log_json=log_json)) is expected
