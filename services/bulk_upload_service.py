"""
Bulk upload pipeline.

Sequences one merchant upload through its phases:

    IDLE -> MATCHING -> (AWAITING_DUPLICATE_CONFIRMATION) -> UPLOADING
         -> PERSISTING -> DONE | PARTIALLY_FAILED

Any fatal precondition failure moves the run to ABORTED. Once uploads
start the match set is frozen and the run always drains to a terminal
phase; completed work is never rolled back.
"""

import asyncio
import inspect
import time
import uuid
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence, Union

import structlog

from config.settings import get_settings
from exceptions import (
    DuplicateDecisionRequiredError,
    FatalPipelineError,
    FeedRecordNotFoundError,
    InvalidPhaseTransitionError,
    MissingOwnerError,
    RunNotFoundError,
    StorageUnavailableError,
)
from integrations.telegram import TelegramNotifier
from models.catalog import (
    CatalogProductRow,
    DuplicateRecord,
    FailureEntry,
    FeedRecord,
    ImageAsset,
    ImageRejection,
    PipelinePhase,
    PipelineState,
    PipelineSummary,
    ProductMatch,
    ProgressEvent,
    UploadedProduct,
)
from parsers.feed_parser import FeedParseResult, validate_feed_rows
from services.catalog_repository import CatalogRepository
from services.duplicate_service import DuplicateDetectionService, duplicate_skus
from services.matching_service import MatchingService, get_matching_service
from services.storage_service import ObjectStore, build_storage_path
from utils.batch_processing import write_in_chunks
from utils.concurrency import run_with_concurrency

logger = structlog.get_logger(__name__)

Phase = PipelinePhase

ALLOWED_TRANSITIONS: dict[PipelinePhase, frozenset[PipelinePhase]] = {
    Phase.IDLE: frozenset({Phase.MATCHING, Phase.ABORTED}),
    Phase.MATCHING: frozenset({
        Phase.AWAITING_DUPLICATE_CONFIRMATION, Phase.UPLOADING, Phase.IDLE, Phase.ABORTED,
    }),
    Phase.AWAITING_DUPLICATE_CONFIRMATION: frozenset({
        Phase.MATCHING, Phase.UPLOADING, Phase.IDLE, Phase.ABORTED,
    }),
    Phase.UPLOADING: frozenset({Phase.PERSISTING, Phase.ABORTED}),
    Phase.PERSISTING: frozenset({Phase.DONE, Phase.PARTIALLY_FAILED, Phase.ABORTED}),
    Phase.DONE: frozenset(),
    Phase.PARTIALLY_FAILED: frozenset(),
    Phase.ABORTED: frozenset(),
}

# Phases in which the match set may still change
EDITABLE_PHASES = frozenset({Phase.MATCHING, Phase.AWAITING_DUPLICATE_CONFIRMATION})

UNMATCHED_ROW_REASON = "No image matched this product"

ProgressListener = Callable[[ProgressEvent], None]
FeedInput = Union[FeedParseResult, Iterable[FeedRecord], Iterable[Mapping[str, Any]]]
ConfirmFn = Callable[[tuple[DuplicateRecord, ...]], Union[bool, Awaitable[bool]]]


class BulkUploadPipeline:
    """
    One bulk upload run for one owner.

    State is an immutable PipelineState snapshot that is replaced, never
    mutated. Progress is published as ProgressEvent values to subscribers.
    """

    def __init__(
        self,
        owner_id: Optional[str],
        repository: CatalogRepository,
        storage: ObjectStore,
        matching_service: Optional[MatchingService] = None,
        notifier: Optional[TelegramNotifier] = None,
        upload_concurrency_limit: int = 3,
        persist_chunk_size: int = 500,
    ):
        self.owner_id = owner_id
        self.repository = repository
        self.storage = storage
        self.matching = matching_service or get_matching_service()
        self.duplicates = DuplicateDetectionService(repository)
        self.notifier = notifier
        self.upload_concurrency_limit = upload_concurrency_limit
        self.persist_chunk_size = persist_chunk_size

        self._state = PipelineState()
        self._events: list[ProgressEvent] = []
        self._listeners: list[ProgressListener] = []

    # ===================
    # STATE / PROGRESS
    # ===================

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def phase(self) -> PipelinePhase:
        return self._state.phase

    @property
    def events(self) -> tuple[ProgressEvent, ...]:
        return tuple(self._events)

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """
        Receive every future ProgressEvent.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, phase: PipelinePhase, completed: int, total: int) -> None:
        event = ProgressEvent(phase=phase, completed=completed, total=total)
        self._events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    "progress_listener_failed",
                    phase=phase.value,
                    error=str(e),
                    error_type=type(e).__name__
                )

    def _progress(self, phase: PipelinePhase) -> Callable[[int, int], None]:
        return lambda completed, total: self._emit(phase, completed, total)

    def _check_transition(self, target: PipelinePhase, requested: str) -> None:
        current = self._state.phase
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidPhaseTransitionError(current.value, requested)

    def _transition(self, target: PipelinePhase, requested: str, **changes) -> None:
        self._check_transition(target, requested)
        previous = self._state.phase
        self._state = self._state.model_copy(update={"phase": target, **changes})
        logger.info(
            "pipeline_phase_changed",
            owner_id=self.owner_id,
            from_phase=previous.value,
            to_phase=target.value
        )

    def _update(self, **changes) -> None:
        self._state = self._state.model_copy(update=changes)

    def _require_editable(self, requested: str) -> None:
        if self._state.phase not in EDITABLE_PHASES:
            raise InvalidPhaseTransitionError(self._state.phase.value, requested)

    def _abort(self, error: FatalPipelineError) -> FatalPipelineError:
        """Move to ABORTED (unless already terminal) and hand back the error to raise."""
        if not self._state.phase.is_terminal:
            previous = self._state.phase
            self._state = self._state.model_copy(
                update={"phase": Phase.ABORTED, "error": error.message}
            )
            logger.error(
                "pipeline_aborted",
                owner_id=self.owner_id,
                from_phase=previous.value,
                code=error.code,
                error=error.message
            )
        return error

    def _require_owner(self) -> None:
        if not self.owner_id:
            raise self._abort(MissingOwnerError())

    # ===================
    # MATCHING
    # ===================

    def load(
        self,
        images: Sequence[ImageAsset],
        feed: FeedInput,
        rejected_images: Sequence[ImageRejection] = (),
    ) -> PipelineState:
        """
        Validate the feed and match images against it (IDLE -> MATCHING).

        Args:
            images: Accepted images in upload order
            feed: FeedParseResult, FeedRecords, or raw row mappings to validate
            rejected_images: Images already refused at intake (reported only)

        Raises:
            MissingOwnerError: No owner; the run is aborted
            InvalidPhaseTransitionError: Run is not IDLE
        """
        self._check_transition(Phase.MATCHING, "load")
        self._require_owner()

        parsed = self._as_feed(feed)
        matches = self.matching.match(images, parsed.records)

        self._transition(
            Phase.MATCHING,
            "load",
            feed=tuple(parsed.records),
            matches=matches,
            rejected_rows=tuple(parsed.errors),
            rejected_images=tuple(rejected_images),
        )
        self._emit(Phase.MATCHING, len(matches), len(matches))
        return self._state

    @staticmethod
    def _as_feed(feed: FeedInput) -> FeedParseResult:
        if isinstance(feed, FeedParseResult):
            return feed
        rows = list(feed)
        if all(isinstance(row, FeedRecord) for row in rows):
            return FeedParseResult(records=rows)
        return validate_feed_rows(rows)

    def find_feed_record(self, sku: str) -> FeedRecord:
        """
        Feed row by SKU (case-insensitive).

        Raises:
            FeedRecordNotFoundError: If no loaded row has that SKU
        """
        key = sku.strip().casefold()
        for record in self._state.feed:
            if record.sku.casefold() == key:
                return record
        raise FeedRecordNotFoundError(sku)

    def apply_manual_match(self, index: int, feed_record: FeedRecord) -> PipelineState:
        """
        Pin a feed row to one match.

        Changing the match set invalidates an earlier duplicate check, so the
        gate runs again before commit.

        Raises:
            InvalidPhaseTransitionError: Uploads already started
            MatchIndexError: Index out of range
        """
        self._require_editable("change matches")
        matches = self.matching.apply_manual_match(self._state.matches, index, feed_record)
        self._reopen_matching(matches)
        return self._state

    def clear_match(self, index: int) -> PipelineState:
        """Unassign one match before commit."""
        self._require_editable("change matches")
        matches = self.matching.clear_match(self._state.matches, index)
        self._reopen_matching(matches)
        return self._state

    def _reopen_matching(self, matches: tuple[ProductMatch, ...]) -> None:
        reset = {
            "matches": matches,
            "duplicates": (),
            "duplicates_checked": False,
            "proceed_with_duplicates": None,
        }
        if self._state.phase == Phase.AWAITING_DUPLICATE_CONFIRMATION:
            self._transition(Phase.MATCHING, "change matches", **reset)
        else:
            self._update(**reset)

    # ===================
    # DUPLICATE GATE
    # ===================

    def candidate_skus(self) -> list[str]:
        """SKUs of every matched entry, in match order, once each."""
        return list(dict.fromkeys(
            m.feed_record.sku for m in self._state.matches if m.feed_record is not None
        ))

    async def check_duplicates(self) -> tuple[DuplicateRecord, ...]:
        """
        Look up candidate SKUs the owner already has.

        With duplicates the run waits in AWAITING_DUPLICATE_CONFIRMATION for
        resolve_duplicates(); without any it stays in MATCHING, gate cleared.

        Raises:
            MissingOwnerError: No owner; the run is aborted
            StorageUnavailableError: Catalog lookup failed; the run is aborted
        """
        self._require_editable("check duplicates")
        self._require_owner()

        try:
            found = await self.duplicates.detect(self.owner_id, self.candidate_skus())
        except FatalPipelineError as e:
            raise self._abort(e)
        except Exception as e:
            raise self._abort(StorageUnavailableError("Catalog store", str(e))) from e

        # Another call may have committed or cancelled the run meanwhile
        self._require_editable("check duplicates")

        duplicates = tuple(found)
        if duplicates:
            self._transition(
                Phase.AWAITING_DUPLICATE_CONFIRMATION,
                "check duplicates",
                duplicates=duplicates,
                duplicates_checked=True,
                proceed_with_duplicates=None,
            )
        else:
            self._update(duplicates=(), duplicates_checked=True, proceed_with_duplicates=None)

        return duplicates

    def resolve_duplicates(self, proceed: bool) -> PipelineState:
        """
        Answer the duplicate gate.

        proceed=True skips duplicate SKUs at commit; proceed=False cancels the
        run and discards everything (back to IDLE, nothing written).
        """
        if self._state.phase != Phase.AWAITING_DUPLICATE_CONFIRMATION:
            raise InvalidPhaseTransitionError(self._state.phase.value, "resolve duplicates")

        if not proceed:
            logger.info(
                "duplicate_gate_cancelled",
                owner_id=self.owner_id,
                duplicates=len(self._state.duplicates)
            )
            self.cancel()
            return self._state

        logger.info(
            "duplicate_gate_continued",
            owner_id=self.owner_id,
            skipped=len(self._state.duplicates)
        )
        self._transition(Phase.MATCHING, "resolve duplicates", proceed_with_duplicates=True)
        return self._state

    def commit_set(self) -> tuple[ProductMatch, ...]:
        """
        Matches that will be uploaded.

        Unmatched entries and duplicate SKUs are left out. When several
        primaries resolved to the same SKU, the first keeps it and the later
        images become its secondary images.
        """
        skip = duplicate_skus(self._state.duplicates)
        kept: dict[str, ProductMatch] = {}

        for match in self._state.matches:
            record = match.feed_record
            if record is None or record.sku in skip:
                continue
            first = kept.get(record.sku)
            if first is None:
                kept[record.sku] = match
            else:
                kept[record.sku] = first.model_copy(update={
                    "secondary_images": first.secondary_images + match.all_images,
                })

        return tuple(kept.values())

    def unmatched_records(self) -> tuple[FeedRecord, ...]:
        """Feed rows no image was matched to; reported at commit, never persisted."""
        matched = {m.feed_record.sku for m in self._state.matches if m.feed_record is not None}
        return tuple(r for r in self._state.feed if r.sku not in matched)

    def _skipped_duplicate_count(self) -> int:
        skip = duplicate_skus(self._state.duplicates)
        return sum(
            1 for m in self._state.matches
            if m.feed_record is not None and m.feed_record.sku in skip
        )

    # ===================
    # COMMIT
    # ===================

    async def commit(self) -> PipelineSummary:
        """
        Upload images and persist catalog rows.

        Upload failures and chunk failures are counted, not raised; the run
        ends DONE only when every product was both uploaded and persisted.

        Raises:
            DuplicateDecisionRequiredError: Duplicates found and not yet resolved
            MissingOwnerError / StorageUnavailableError: Fatal; the run is aborted
            InvalidPhaseTransitionError: Run is not ready to commit
        """
        self._check_transition(Phase.UPLOADING, "commit")
        self._require_owner()

        if not self._state.duplicates_checked:
            await self.check_duplicates()
        if self._state.phase == Phase.AWAITING_DUPLICATE_CONFIRMATION:
            raise DuplicateDecisionRequiredError(sorted(duplicate_skus(self._state.duplicates)))

        to_upload = self.commit_set()
        self._transition(Phase.UPLOADING, "commit")

        try:
            await self.storage.ensure_available()
        except FatalPipelineError as e:
            raise self._abort(e)
        except Exception as e:
            raise self._abort(StorageUnavailableError("Object storage", str(e))) from e

        self._emit(Phase.UPLOADING, 0, len(to_upload))
        uploads = await run_with_concurrency(
            to_upload,
            self._upload_match,
            limit=self.upload_concurrency_limit,
            on_progress=self._progress(Phase.UPLOADING),
        )

        # Completion order is arbitrary; persist in match order
        order = {m.feed_record.sku: i for i, m in enumerate(to_upload)}
        uploaded = sorted(uploads.successful, key=lambda u: order[u.record.sku])
        rows = [CatalogProductRow.from_upload(self.owner_id, u) for u in uploaded]

        self._transition(Phase.PERSISTING, "persist")
        self._emit(Phase.PERSISTING, 0, len(rows))
        persisted = await write_in_chunks(
            rows,
            self.persist_chunk_size,
            lambda chunk: self.repository.insert_many(self.owner_id, chunk),
            on_progress=self._progress(Phase.PERSISTING),
        )

        records = {m.feed_record.sku: m.feed_record for m in to_upload}
        unmatched = self.unmatched_records()
        failures = [
            FailureEntry.for_record(f.item.feed_record, "upload", f.error)
            for f in uploads.failed
        ] + [
            FailureEntry.for_record(records[f.item.sku], "persist", f.error)
            for f in persisted.failed
        ]
        retry_count = len(failures)
        failures += [
            FailureEntry.for_record(record, "match", UNMATCHED_ROW_REASON)
            for record in unmatched
        ]

        summary = PipelineSummary(
            succeeded=len(persisted.successful),
            failed=retry_count,
            skipped_duplicates=self._skipped_duplicate_count(),
            unmatched_images=sum(1 for m in self._state.matches if not m.is_matched),
            unmatched_rows=len(unmatched),
            rejected_rows=len(self._state.rejected_rows),
            failures=tuple(failures),
        )

        final = Phase.DONE if summary.failed == 0 else Phase.PARTIALLY_FAILED
        self._transition(final, "finish", summary=summary)

        logger.info(
            "bulk_upload_finished",
            owner_id=self.owner_id,
            phase=final.value,
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped_duplicates=summary.skipped_duplicates,
            unmatched_rows=summary.unmatched_rows
        )

        await self._notify(summary)
        return summary

    async def _upload_match(self, match: ProductMatch) -> UploadedProduct:
        """Upload the primary image, then its secondaries; any failure fails the product."""
        image_url = await self._upload_image(match.image)
        secondary_urls = []
        for image in match.secondary_images:
            secondary_urls.append(await self._upload_image(image))
        return UploadedProduct(
            record=match.feed_record,
            image_url=image_url,
            secondary_image_urls=tuple(secondary_urls),
        )

    async def _upload_image(self, image: ImageAsset) -> str:
        path = build_storage_path(self.owner_id, image.filename)
        return await self.storage.put(path, image.content, image.content_type)

    async def _notify(self, summary: PipelineSummary) -> None:
        if self.notifier is None:
            return
        try:
            await asyncio.to_thread(self.notifier.send_summary, summary)
        except Exception as e:
            logger.warning("upload_notification_failed", owner_id=self.owner_id, error=str(e))

    # ===================
    # CANCEL / DRIVER
    # ===================

    def cancel(self) -> PipelineState:
        """
        Discard the run before uploads start (back to IDLE).

        Raises:
            InvalidPhaseTransitionError: Uploads already started or run finished
        """
        if self._state.phase == Phase.IDLE:
            return self._state
        self._check_transition(Phase.IDLE, "cancel")
        previous = self._state.phase
        self._state = PipelineState()
        logger.info("pipeline_cancelled", owner_id=self.owner_id, from_phase=previous.value)
        return self._state

    async def execute(
        self,
        images: Sequence[ImageAsset],
        feed: FeedInput,
        confirm: ConfirmFn,
    ) -> Optional[PipelineSummary]:
        """
        Run the whole pipeline in one call.

        Args:
            images: Accepted images
            feed: Feed rows (see load)
            confirm: Called with the duplicates when any exist; returns (or
                     awaits) True to skip them and continue, False to cancel

        Returns:
            PipelineSummary, or None if the caller cancelled at the duplicate gate
        """
        self.load(images, feed)

        duplicates = await self.check_duplicates()
        if duplicates:
            decision = confirm(duplicates)
            if inspect.isawaitable(decision):
                decision = await decision
            self.resolve_duplicates(bool(decision))
            if not decision:
                return None

        return await self.commit()


# ===================
# RUN REGISTRY
# ===================

RepositoryFactory = Callable[[], CatalogRepository]
StorageFactory = Callable[[], ObjectStore]
NotifierFactory = Callable[[], Optional[TelegramNotifier]]


class BulkUploadRunRegistry:
    """
    In-process registry of open runs for the HTTP surface.

    Runs are memory only; a restart drops every open run. Finished and idle
    runs expire after `ttl_seconds`.
    """

    def __init__(
        self,
        repository_factory: RepositoryFactory,
        storage_factory: StorageFactory,
        notifier_factory: Optional[NotifierFactory] = None,
        matching_service: Optional[MatchingService] = None,
        upload_concurrency_limit: int = 3,
        persist_chunk_size: int = 500,
        ttl_seconds: float = 3600,
    ):
        self.repository_factory = repository_factory
        self.storage_factory = storage_factory
        self.notifier_factory = notifier_factory
        self.matching_service = matching_service
        self.upload_concurrency_limit = upload_concurrency_limit
        self.persist_chunk_size = persist_chunk_size
        self.ttl_seconds = ttl_seconds
        self._runs: dict[str, tuple[float, BulkUploadPipeline]] = {}

    def create(self, owner_id: Optional[str]) -> tuple[str, BulkUploadPipeline]:
        """Open a new run for an owner."""
        self.prune()
        pipeline = BulkUploadPipeline(
            owner_id=owner_id,
            repository=self.repository_factory(),
            storage=self.storage_factory(),
            matching_service=self.matching_service,
            notifier=self.notifier_factory() if self.notifier_factory else None,
            upload_concurrency_limit=self.upload_concurrency_limit,
            persist_chunk_size=self.persist_chunk_size,
        )
        run_id = uuid.uuid4().hex
        self._runs[run_id] = (time.monotonic(), pipeline)
        logger.info("upload_run_created", run_id=run_id, owner_id=owner_id)
        return run_id, pipeline

    def get(self, run_id: str, owner_id: Optional[str] = None) -> BulkUploadPipeline:
        """
        Open run by id.

        Raises:
            RunNotFoundError: Unknown or expired run, or owned by someone else
        """
        entry = self._runs.get(run_id)
        if entry is None:
            raise RunNotFoundError(run_id)
        pipeline = entry[1]
        if owner_id is not None and pipeline.owner_id != owner_id:
            raise RunNotFoundError(run_id)
        return pipeline

    def remove(self, run_id: str) -> None:
        self._runs.pop(run_id, None)

    def prune(self) -> int:
        """Drop expired runs that are not mid-upload. Returns how many were dropped."""
        now = time.monotonic()
        busy = {Phase.UPLOADING, Phase.PERSISTING}
        expired = [
            run_id for run_id, (created, pipeline) in self._runs.items()
            if now - created > self.ttl_seconds and pipeline.phase not in busy
        ]
        for run_id in expired:
            del self._runs[run_id]
        if expired:
            logger.info("upload_runs_pruned", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._runs)


# Singleton instance for convenience
_run_registry: Optional[BulkUploadRunRegistry] = None


def get_run_registry() -> BulkUploadRunRegistry:
    """Get or create the run registry wired to Supabase and Telegram."""
    global _run_registry
    if _run_registry is None:
        from integrations.telegram import get_notifier
        from services.catalog_repository import SupabaseCatalogRepository
        from services.storage_service import SupabaseObjectStore

        settings = get_settings()
        _run_registry = BulkUploadRunRegistry(
            repository_factory=SupabaseCatalogRepository,
            storage_factory=SupabaseObjectStore,
            notifier_factory=get_notifier,
            upload_concurrency_limit=settings.upload_concurrency_limit,
            persist_chunk_size=settings.persist_chunk_size,
        )
    return _run_registry
