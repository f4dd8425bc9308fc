"""Tests for correlation ID context management."""

import asyncio
import uuid

import pytest

from fscrape.observability.context import (
    clear_correlation_id,
    correlation_id_context,
    get_correlation_id,
    set_correlation_id,
)


class TestSetCorrelationId:
    def test_generates_uuid_when_no_id_provided(self):
        """Should generate a valid UUID when no ID is provided."""
        clear_correlation_id()

        result = set_correlation_id()

        assert str(uuid.UUID(result)) == result
        assert get_correlation_id() == result

    def test_uses_provided_id(self):
        clear_correlation_id()

        assert set_correlation_id("batch-1") == "batch-1"
        assert get_correlation_id() == "batch-1"

    def test_clear(self):
        set_correlation_id("batch-1")
        clear_correlation_id()

        assert get_correlation_id() is None


class TestCorrelationIdContext:
    def test_restores_previous_value(self):
        """Should restore the outer ID when the block exits."""
        set_correlation_id("outer")

        with correlation_id_context("inner") as corr_id:
            assert corr_id == "inner"
            assert get_correlation_id() == "inner"

        assert get_correlation_id() == "outer"

    def test_restores_on_exception(self):
        clear_correlation_id()

        with pytest.raises(RuntimeError):
            with correlation_id_context("inner"):
                raise RuntimeError("boom")

        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_propagates_to_child_tasks(self):
        """Tasks spawned inside the block see the same ID."""

        async def read_id():
            await asyncio.sleep(0)
            return get_correlation_id()

        with correlation_id_context("batch-42"):
            results = await asyncio.gather(read_id(), read_id())

        assert results == ["batch-42", "batch-42"]
