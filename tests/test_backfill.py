"""Tests for the backfill (bulk ingestion) loop."""

import asyncio

import pytest

from app.core.errors import BackfillAlreadyRunning, SourceError
from app.models.ticket_models import TerminationReason, TicketRecord
from app.services.backfill_service import BackfillJob, run_backfill
from tests.fakes import FakeEmbedder, FakeSource, FakeStore, make_tickets


class TestRunBackfill:
    """Tests for run_backfill."""

    @pytest.mark.asyncio
    async def test_ingests_every_ticket_then_exhausts(self, config):
        source = FakeSource(make_tickets(5))
        store = FakeStore()
        embedder = FakeEmbedder()

        report = await run_backfill(source, store, embedder, config)

        assert report.inserted == 5
        assert report.processed == 5
        assert report.termination == TerminationReason.EXHAUSTED
        assert sorted(store.rows) == ["1", "2", "3", "4", "5"]
        assert source.calls == [1, 2]

    @pytest.mark.asyncio
    async def test_two_pages_then_empty_is_three_fetches(self, config):
        """Short pages do not end the run; only an empty page does."""
        config = config.model_copy(update={"page_size": 3})
        source = FakeSource(make_tickets(5))

        report = await run_backfill(source, FakeStore(), FakeEmbedder(), config)

        assert source.calls == [1, 2, 3]
        assert report.pages_fetched == 3
        assert report.processed == 5
        assert report.inserted == 5

    @pytest.mark.asyncio
    async def test_second_run_skips_everything(self, config):
        source = FakeSource(make_tickets(7))
        store = FakeStore()
        embedder = FakeEmbedder()

        first = await run_backfill(source, store, embedder, config)
        second = await run_backfill(source, store, embedder, config)

        assert first.inserted == 7
        assert second.inserted == 0
        assert second.skipped_duplicate == 7
        assert len(store.rows) == 7
        assert len(embedder.calls) == 7

    @pytest.mark.asyncio
    async def test_duplicate_is_never_embedded(self, config):
        tickets = make_tickets(3)
        store = FakeStore(existing=["2"])
        embedder = FakeEmbedder()

        report = await run_backfill(FakeSource(tickets), store, embedder, config)

        assert report.skipped_duplicate == 1
        assert report.inserted == 2
        assert tickets[1].summary not in embedder.calls
        assert len(embedder.calls) == 2
        assert "2" not in store.upsert_calls

    @pytest.mark.asyncio
    async def test_short_text_skips_store_and_provider(self, config):
        tickets = [
            TicketRecord(id="1", summary=""),
            TicketRecord(id="2", summary="    "),
            TicketRecord(id="3", summary="  123456789  "),
            TicketRecord(id="4", summary="1234567890"),
        ]
        store = FakeStore()
        embedder = FakeEmbedder()

        report = await run_backfill(FakeSource(tickets), store, embedder, config)

        assert report.skipped_short_text == 3
        assert report.inserted == 1
        assert report.processed == 4
        assert store.exists_calls == ["4"]
        assert embedder.calls == ["1234567890"]

    @pytest.mark.asyncio
    async def test_notes_count_toward_length_when_enabled(self, config):
        config = config.model_copy(update={"include_notes": True})
        tickets = [TicketRecord(id="1", summary="VPN", notes="Drops every 10 minutes")]
        embedder = FakeEmbedder()

        report = await run_backfill(FakeSource(tickets), FakeStore(), embedder, config)

        assert report.inserted == 1
        assert embedder.calls == ["VPN\n\nDrops every 10 minutes"]

    @pytest.mark.asyncio
    async def test_limit_stops_within_first_page(self, config):
        source = FakeSource(make_tickets(25))

        report = await run_backfill(source, FakeStore(), FakeEmbedder(), config, limit=10)

        assert report.processed == 10
        assert report.inserted == 10
        assert report.termination == TerminationReason.LIMIT_REACHED
        assert "limit=10" in report.note
        assert source.calls == [1]

    @pytest.mark.asyncio
    async def test_limit_fetches_only_needed_pages(self, config):
        config = config.model_copy(update={"page_size": 5})
        source = FakeSource(make_tickets(25))

        report = await run_backfill(source, FakeStore(), FakeEmbedder(), config, limit=10)

        assert report.processed == 10
        assert source.calls == [1, 2]

    @pytest.mark.asyncio
    async def test_limit_counts_skipped_tickets(self, config):
        store = FakeStore(existing=["1", "2"])

        report = await run_backfill(
            FakeSource(make_tickets(5)), store, FakeEmbedder(), config, limit=3
        )

        assert report.processed == 3
        assert report.skipped_duplicate == 2
        assert report.inserted == 1

    @pytest.mark.asyncio
    async def test_zero_limit_means_unbounded(self, config):
        report = await run_backfill(
            FakeSource(make_tickets(12)), FakeStore(), FakeEmbedder(), config, limit=0
        )

        assert report.processed == 12
        assert report.termination == TerminationReason.EXHAUSTED
        assert report.note is None

    @pytest.mark.asyncio
    async def test_malformed_page_fails_immediately(self, config):
        source = FakeSource(
            make_tickets(5),
            errors={1: SourceError("Failed to parse tickets page 1", raw="<html>")},
        )
        embedder = FakeEmbedder()

        with pytest.raises(SourceError) as exc_info:
            await run_backfill(source, FakeStore(), embedder, config)

        assert exc_info.value.raw == "<html>"
        assert exc_info.value.report.termination == TerminationReason.SOURCE_ERROR
        assert source.calls == [1]
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_source_error_keeps_partial_report(self, config):
        config = config.model_copy(update={"page_size": 2})
        source = FakeSource(
            make_tickets(6),
            errors={2: SourceError("Ticket source returned HTTP 401", raw="denied")},
        )

        with pytest.raises(SourceError) as exc_info:
            await run_backfill(source, FakeStore(), FakeEmbedder(), config)

        report = exc_info.value.report
        assert report.inserted == 2
        assert report.ok is False
        assert source.calls == [1, 2]

    @pytest.mark.asyncio
    async def test_one_provider_failure_does_not_stop_the_page(self, config):
        tickets = make_tickets(10)
        embedder = FakeEmbedder(fail_markers=["floor 4"])
        store = FakeStore()

        report = await run_backfill(FakeSource(tickets), store, embedder, config)

        assert report.processed == 10
        assert report.inserted == 9
        assert report.failed == 1
        assert report.failures[0].ticket_number == "4"
        assert "No embedding" in report.failures[0].reason
        assert "4" not in store.rows

    @pytest.mark.asyncio
    async def test_store_failures_are_per_ticket(self, config):
        store = FakeStore(fail_exists=["1"], fail_upsert=["2"])

        report = await run_backfill(
            FakeSource(make_tickets(3)), store, FakeEmbedder(), config
        )

        assert report.failed == 2
        assert report.inserted == 1
        assert [f.ticket_number for f in report.failures] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_failure_list_is_bounded(self, config):
        config = config.model_copy(update={"max_failures_retained": 2})
        embedder = FakeEmbedder(fail_markers=["Printer"])

        report = await run_backfill(
            FakeSource(make_tickets(5)), FakeStore(), embedder, config
        )

        assert report.failed == 5
        assert len(report.failures) == 2

    @pytest.mark.asyncio
    async def test_cancelled_before_start_fetches_nothing(self, config):
        source = FakeSource(make_tickets(3))
        cancel = asyncio.Event()
        cancel.set()

        report = await run_backfill(
            source, FakeStore(), FakeEmbedder(), config, cancel_event=cancel
        )

        assert report.termination == TerminationReason.CANCELLED
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_cancel_is_honored_between_tickets(self, config):
        cancel = asyncio.Event()

        class CancellingEmbedder(FakeEmbedder):
            async def embed(self, text, model=None):
                cancel.set()
                return await super().embed(text, model)

        report = await run_backfill(
            FakeSource(make_tickets(5)),
            FakeStore(),
            CancellingEmbedder(),
            config,
            cancel_event=cancel,
        )

        assert report.processed == 1
        assert report.inserted == 1
        assert report.termination == TerminationReason.CANCELLED


class TestBackfillJob:
    """Tests for the background job wrapper."""

    @pytest.mark.asyncio
    async def test_runs_and_keeps_report(self, config):
        job = BackfillJob(FakeSource(make_tickets(4)), FakeStore(), FakeEmbedder(), config)

        task = job.start()
        await task

        assert not job.is_running
        assert job.last_report.inserted == 4
        assert job.last_error is None

    @pytest.mark.asyncio
    async def test_rejects_concurrent_start(self, config):
        job = BackfillJob(FakeSource(make_tickets(4)), FakeStore(), FakeEmbedder(), config)

        task = job.start()
        with pytest.raises(BackfillAlreadyRunning):
            job.start()
        await task

    @pytest.mark.asyncio
    async def test_records_source_error(self, config):
        source = FakeSource(errors={1: SourceError("boom", raw="not json")})
        job = BackfillJob(source, FakeStore(), FakeEmbedder(), config)

        await job.start()

        assert job.last_error == "boom"
        assert job.last_report.termination == TerminationReason.SOURCE_ERROR

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, config):
        job = BackfillJob(FakeSource(), FakeStore(), FakeEmbedder(), config)
        assert job.cancel() is False

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, config):
        job = BackfillJob(FakeSource(make_tickets(50)), FakeStore(), FakeEmbedder(), config)

        task = job.start()
        assert job.cancel() is True
        await task

        assert job.last_report.termination == TerminationReason.CANCELLED
        assert job.last_report.processed == 0

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_job(self, config):
        class SlowEmbedder(FakeEmbedder):
            async def embed(self, text, model=None):
                await asyncio.sleep(0.01)
                return await super().embed(text, model)

        job = BackfillJob(FakeSource(make_tickets(50)), FakeStore(), SlowEmbedder(), config)

        job.start()
        await asyncio.sleep(0.03)
        await job.stop()

        assert not job.is_running
        assert job.last_report.termination == TerminationReason.CANCELLED
        assert 0 < job.last_report.processed < 50
        assert job.last_report.failed == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_task_after_timeout(self, config):
        class StuckEmbedder(FakeEmbedder):
            async def embed(self, text, model=None):
                await asyncio.Event().wait()

        job = BackfillJob(FakeSource(make_tickets(3)), FakeStore(), StuckEmbedder(), config)

        task = job.start()
        await asyncio.sleep(0)
        await job.stop(timeout=0.01)

        assert task.done()
        assert not job.is_running

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, config):
        job = BackfillJob(FakeSource(), FakeStore(), FakeEmbedder(), config)

        await job.stop()

        assert not job.is_running
