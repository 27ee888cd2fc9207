"""
Unit tests for the logging subsystem.

Covers the scoped LogContext (sync and async, nesting, correlation id
inheritance) and the health snapshot of the queue-based pipeline.
"""

import pytest

from raidforge.core.logging import LogContext, get_log_context, get_logger, get_logging_health


@pytest.mark.unit
class TestLogContext:
    """ContextVar-backed enrichment scopes."""

    def test_sync_scope_sets_and_restores(self):
        assert get_log_context() == {}

        with LogContext(participant_id="p1", operation="settle_rewards"):
            context = get_log_context()
            assert context["participant_id"] == "p1"
            assert context["operation"] == "settle_rewards"
            assert context["correlation_id"]

        assert get_log_context() == {}

    def test_nested_scope_inherits_correlation_id(self):
        with LogContext(encounter_id="corrupted_temple") as outer:
            with LogContext(instance_id="abc"):
                inner = get_log_context()

        assert inner["encounter_id"] == "corrupted_temple"
        assert inner["instance_id"] == "abc"
        assert inner["correlation_id"] == outer.context["correlation_id"]

    def test_explicit_correlation_id_wins(self):
        with LogContext(correlation_id="req-42"):
            assert get_log_context()["correlation_id"] == "req-42"

    @pytest.mark.asyncio
    async def test_async_scope(self):
        async with LogContext(instance_id="i1", attempt=2):
            context = get_log_context()

        assert context["instance_id"] == "i1"
        assert context["attempt"] == 2
        assert get_log_context() == {}


@pytest.mark.unit
class TestLoggingHealth:
    """Queue pipeline snapshot."""

    def test_initialized_on_import(self):
        health = get_logging_health()

        assert health.initialized is True
        assert health.queue_max_size > 0

    def test_records_are_counted(self):
        before = get_logging_health().records_enqueued

        get_logger("tests.logging").warning("health check record")

        assert get_logging_health().records_enqueued > before
