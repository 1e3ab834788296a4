"""
CRM -> Vector Sync Orchestrator
Pulls crm.lead records, embeds them and writes them to the vector store.

Phases of a sync run, in order:
1. fetching  (0-33%)   page through the CRM
2. embedding (33-66%)  build lead documents and embed them in document mode
3. upserting (66-100%) write points in fixed-size batches

A failed upsert batch is recorded and the remaining batches continue.
Transport, timeout and circuit errors are folded into the SyncResult;
they never escape full_sync or incremental_sync.
"""

import math
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from services.crm.client import LEAD_FIELDS, CrmSource
from services.embed_cluster.embedder import EmbedMode, LeadEmbedder
from services.embed_cluster.text_builder import build_embedding_text, build_metadata
from services.embed_cluster.vector_store import VectorStore
from shared.config import MAX_DESCRIPTION_WORDS, SYNC_FETCH_BATCH_SIZE, SYNC_UPSERT_BATCH_SIZE
from shared.errors import NotFoundError, ProviderUnavailable
from shared.schemas.lead import VectorRecord
from shared.schemas.sync import SyncPhase, SyncProgress, SyncResult

from .context import SyncContext

logger = structlog.get_logger()

ProgressCallback = Callable[[SyncProgress], None]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ODOO_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def odoo_datetime(value: datetime) -> str:
    """Odoo stores datetimes as naive UTC strings"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(ODOO_DATETIME_FORMAT)


class _Run:
    """Counters and progress reporting for one sync run"""

    def __init__(self, on_progress: Optional[ProgressCallback], started_at: datetime):
        self.on_progress = on_progress
        self.started_at = started_at
        self.started = time.monotonic()
        self.synced = 0
        self.failed = 0
        self.errors: list[str] = []

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def report(self, phase: SyncPhase, batch: int, batches: int, processed: int, total: int):
        if not self.on_progress:
            return
        offset, span = {
            SyncPhase.FETCHING: (0, 33),
            SyncPhase.EMBEDDING: (33, 33),
            SyncPhase.UPSERTING: (66, 34),
        }[phase]
        fraction = processed / total if total else 1.0
        self.on_progress(SyncProgress(
            phase=phase,
            current_batch=batch,
            total_batches=batches,
            records_processed=processed,
            total_records=total,
            percent_complete=min(100, offset + round(fraction * span)),
            elapsed_ms=self.elapsed_ms,
        ))


class SyncOrchestrator:
    """Drives full, incremental and single-record syncs."""

    def __init__(
        self,
        crm: CrmSource,
        embedder: LeadEmbedder,
        vector_store: VectorStore,
        context: SyncContext,
        fetch_batch_size: int = SYNC_FETCH_BATCH_SIZE,
        upsert_batch_size: int = SYNC_UPSERT_BATCH_SIZE,
        lead_fields: Optional[list[str]] = None,
        max_description_words: int = MAX_DESCRIPTION_WORDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.crm = crm
        self.embedder = embedder
        self.vector_store = vector_store
        self.context = context
        self.fetch_batch_size = max(1, fetch_batch_size)
        self.upsert_batch_size = max(1, upsert_batch_size)
        self.lead_fields = lead_fields or LEAD_FIELDS
        self.max_description_words = max_description_words
        self._clock = clock

    async def full_sync(self, on_progress: Optional[ProgressCallback] = None) -> SyncResult:
        """Re-embed and upsert every lead, including archived ones."""
        if not self.context.try_begin():
            return self._busy()
        try:
            run = _Run(on_progress, self._clock())
            if not self.embedder.available:
                return self._provider_missing(run)
            logger.info("Starting full sync", version=self.context.pending_version)
            try:
                await self.vector_store.ensure_collection()
            except Exception as e:
                logger.error("Failed to prepare collection", error=str(e))
                run.errors.append(f"Collection setup failed: {e}")
                return self._finish(run)
            return await self._sync_domain([], run)
        finally:
            self.context.finish()

    async def incremental_sync(
        self,
        since: Optional[datetime] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SyncResult:
        """
        Sync leads modified since `since`.

        Args:
            since: Lower bound on write_date; defaults to the last sync time,
                or the epoch when the store has never been synced
            on_progress: Receives SyncProgress events

        Returns:
            SyncResult; a no-op success when nothing changed
        """
        if not self.context.try_begin():
            return self._busy()
        try:
            run = _Run(on_progress, self._clock())
            if not self.embedder.available:
                return self._provider_missing(run)
            since = since or self.context.snapshot().last_sync_time or EPOCH
            domain = [["write_date", ">=", odoo_datetime(since)]]
            logger.info("Starting incremental sync", since=odoo_datetime(since))

            try:
                total = await self.crm.count(domain, include_inactive=True)
            except Exception as e:
                logger.error("Failed to count changed leads", error=str(e))
                run.errors.append(f"Count failed: {e}")
                return self._finish(run)

            if total == 0:
                logger.info("No changed leads since last sync")
                return self._finish(run)

            try:
                await self.vector_store.ensure_collection()
            except Exception as e:
                logger.error("Failed to prepare collection", error=str(e))
                run.errors.append(f"Collection setup failed: {e}")
                return self._finish(run)
            return await self._sync_domain(domain, run, total=total)
        finally:
            self.context.finish()

    async def sync_one(self, lead_id: int) -> SyncResult:
        """
        Re-embed a single lead. Does not take the single-flight guard and
        does not bump the sync version.

        Raises:
            ProviderUnavailable: no embedding provider configured
            NotFoundError: the lead does not exist in the CRM
        """
        if not self.embedder.available:
            raise ProviderUnavailable()
        run = _Run(None, self._clock())

        try:
            record = await self.crm.fetch_one(lead_id, self.lead_fields)
        except Exception as e:
            logger.error("Failed to fetch lead", lead_id=lead_id, error=str(e))
            run.failed = 1
            run.errors.append(f"Fetch failed: {e}")
            return self._result(run)
        if record is None:
            raise NotFoundError("Lead", lead_id)

        try:
            records = await self._embed([record], run)
            await self.vector_store.upsert(records)
            run.synced = len(records)
        except Exception as e:
            logger.error("Failed to sync lead", lead_id=lead_id, error=str(e))
            run.failed = 1
            run.errors.append(str(e))

        logger.info("Synced single lead", lead_id=lead_id, success=run.failed == 0)
        return self._result(run)

    async def _sync_domain(self, domain: list, run: _Run, total: Optional[int] = None) -> SyncResult:
        # Phase 1: fetch
        try:
            if total is None:
                total = await self.crm.count(domain, include_inactive=True)
        except Exception as e:
            logger.error("Failed to count leads", error=str(e))
            run.errors.append(f"Count failed: {e}")
            return self._finish(run)

        leads = await self._fetch(domain, total, run)
        if not leads:
            return self._finish(run)

        # Phase 2: embed
        try:
            records = await self._embed(leads, run)
        except Exception as e:
            logger.error("Embedding failed", records=len(leads), error=str(e))
            run.failed += len(leads)
            run.errors.append(f"Embedding failed: {e}")
            return self._finish(run)

        # Phase 3: upsert
        await self._upsert(records, run)
        return self._finish(run)

    async def _fetch(self, domain: list, total: int, run: _Run) -> list[dict]:
        batches = math.ceil(total / self.fetch_batch_size)
        leads: list[dict] = []
        for batch in range(batches):
            offset = batch * self.fetch_batch_size
            try:
                page = await self.crm.fetch_page(
                    domain,
                    self.lead_fields,
                    offset=offset,
                    limit=self.fetch_batch_size,
                    order="id asc",
                    include_inactive=True,
                )
            except Exception as e:
                expected = min(self.fetch_batch_size, total - offset)
                logger.error("Fetch batch failed", batch=batch + 1, error=str(e))
                run.failed += expected
                run.errors.append(f"Fetch batch {batch + 1}: {e}")
                continue
            if not page:
                break
            leads.extend(page)
            run.report(SyncPhase.FETCHING, batch + 1, batches, min(offset + len(page), total), total)

        logger.info("Fetched leads", count=len(leads), total=total)
        return leads

    async def _embed(self, leads: list[dict], run: _Run) -> list[VectorRecord]:
        version = self.context.pending_version
        synced_at = self._clock()
        documents = []
        for lead in leads:
            built = build_embedding_text(lead, self.max_description_words)
            documents.append((lead, built))

        total = len(documents)
        chunk = getattr(self.embedder, "batch_size", LeadEmbedder.MAX_BATCH_SIZE)
        batches = math.ceil(total / chunk)

        def progress(done: int, _total: int):
            run.report(SyncPhase.EMBEDDING, math.ceil(done / chunk), batches, done, total)

        vectors = await self.embedder.embed_batch(
            [built.text for _, built in documents], EmbedMode.DOCUMENT, progress
        )
        return [
            VectorRecord(
                id=str(lead["id"]),
                vector=vector,
                metadata=build_metadata(lead, built.text, built.truncated, version, synced_at),
            )
            for (lead, built), vector in zip(documents, vectors)
        ]

    async def _upsert(self, records: list[VectorRecord], run: _Run):
        total = len(records)
        batches = math.ceil(total / self.upsert_batch_size)
        for batch in range(batches):
            chunk = records[batch * self.upsert_batch_size:(batch + 1) * self.upsert_batch_size]
            try:
                run.synced += await self.vector_store.upsert(chunk)
            except Exception as e:
                logger.error("Upsert batch failed", batch=batch + 1, size=len(chunk), error=str(e))
                run.failed += len(chunk)
                run.errors.append(f"Batch {batch + 1}: {e}")
            run.report(
                SyncPhase.UPSERTING,
                batch + 1,
                batches,
                min((batch + 1) * self.upsert_batch_size, total),
                total,
            )

    def _finish(self, run: _Run) -> SyncResult:
        if run.failed == 0 and not run.errors and run.synced > 0:
            # Watermark is the run start time
            version = self.context.commit(run.started_at)
            logger.info("Sync complete", synced=run.synced, version=version, duration_ms=run.elapsed_ms)
        elif run.errors:
            logger.warning("Sync finished with errors", synced=run.synced, failed=run.failed, errors=len(run.errors))
        return self._result(run)

    def _result(self, run: _Run) -> SyncResult:
        return SyncResult(
            success=run.failed == 0 and not run.errors,
            records_synced=run.synced,
            records_failed=run.failed,
            duration_ms=run.elapsed_ms,
            sync_version=self.context.snapshot().sync_version,
            errors=run.errors or None,
        )

    def _busy(self) -> SyncResult:
        logger.warning("Sync rejected, another sync is running")
        return SyncResult(success=False, errors=["Sync already in progress"])

    def _provider_missing(self, run: _Run) -> SyncResult:
        error = str(ProviderUnavailable())
        logger.error("Sync aborted", error=error)
        run.errors.append(error)
        return self._result(run)
