"""Sweep orchestration: validation, correction and extraction over pages.

A sweep walks pages in ascending (or explicitly given) order and sends
their entries to an EntryJudge in fixed-size batches. Results are
written back to the store as one unit per batch (validation) or per
page (correction, extraction), so a crash never loses more than the
request in flight.

Stopping is cooperative. A CancellationToken is checked between units
of work, and a request budget shared by every sweep of one orchestrator
takes the same stop path when it runs out. Work already returned by the
judge is always applied before the sweep ends.
"""

import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from dataclasses import asdict, dataclass, field
from typing import Literal

from lexicon.batch.codec import build_extracted_entry
from lexicon.config import LexiconConfig
from lexicon.logging import SweepLogger, set_logger
from lexicon.nlp.judge import EntryJudge, JudgeError, JudgeQuotaExceeded
from lexicon.nlp.models import PageImage
from lexicon.store.db import EntryStore
from lexicon.store.models import EntryCorrection, LexiconEntry, ValidationUpdate, now_millis
from lexicon.store.pages import page_number_from_id
from lexicon.sweep.cancellation import CancellationToken
from lexicon.sweep.images import ImageFetcher

logger = logging.getLogger(__name__)

SweepMode = Literal["validate", "correct", "extract"]
SweepOutcome = Literal["completed", "cancelled", "budget_exhausted", "failed"]


class SweepAlreadyRunning(RuntimeError):
    """Raised when a sweep is started while another one is running."""


class SweepFailed(Exception):
    """A sweep stopped on an error; `result` holds what was done before it."""

    def __init__(self, message: str, result: "SweepResult"):
        super().__init__(message)
        self.result = result


@dataclass
class SweepState:
    """Live progress of the running sweep."""

    mode: SweepMode
    total_pages: int
    processed_pages: int = 0
    current_page: str | None = None
    invalid_pages: int = 0
    requests_used: int = 0


@dataclass
class SweepResult:
    """Final report of one sweep."""

    mode: SweepMode
    pages_total: int = 0
    pages_processed: int = 0
    entries_submitted: int = 0
    entries_updated: int = 0
    # Requests issued by this sweep / by this orchestrator so far
    requests_used: int = 0
    requests_used_total: int = 0
    invalid_pages: int = 0
    outcome: SweepOutcome = "completed"
    error: str | None = None
    skipped_pages: list[str] = field(default_factory=list)
    # Pages whose extraction call failed (extraction sweeps only)
    failed_pages: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


ProgressCallback = Callable[[SweepState], None]


def _chunks(items: Sequence[LexiconEntry], size: int) -> Iterator[list[LexiconEntry]]:
    for i in range(0, len(items), size):
        yield list(items[i:i + size])


class _StoreWriteFailed(Exception):
    pass


class SweepOrchestrator:
    """Drives validation and correction sweeps over one EntryStore.

    Only one sweep runs at a time. The request counter lives as long as
    the orchestrator and is shared by both modes.
    """

    def __init__(
        self,
        store: EntryStore,
        judge: EntryJudge,
        config: LexiconConfig | None = None,
        image_fetcher: ImageFetcher | None = None,
        session_logging: bool = True,
        strongs=None,
    ):
        self.store = store
        self.judge = judge
        self.config = config or LexiconConfig()
        self.image_fetcher = image_fetcher or ImageFetcher(self.config.pages)
        self.session_logging = session_logging
        # Strong's index (StrongsIndex or anything with join(word)) for extracted entries
        self.strongs = strongs
        self.max_requests: int | None = self.config.sweep.max_requests
        self.requests_used = 0
        self.invalid_pages = 0

        self._guard = threading.Lock()
        self._running = False
        self._token: CancellationToken | None = None
        self._state: SweepState | None = None
        self._session: SweepLogger | None = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def state(self) -> SweepState | None:
        return self._state

    @property
    def budget_remaining(self) -> int | None:
        if self.max_requests is None:
            return None
        return max(0, self.max_requests - self.requests_used)

    def _budget_reached(self) -> bool:
        return self.max_requests is not None and self.requests_used >= self.max_requests

    def stop(self, reason: str = "stopped") -> None:
        """Ask the running sweep to stop. Safe to call at any time."""
        token = self._token
        if token is not None:
            token.cancel(reason)

    def _begin(self, mode: SweepMode, total_pages: int, token: CancellationToken | None,
               params: dict) -> tuple[SweepState, SweepResult, CancellationToken]:
        with self._guard:
            if self._running:
                raise SweepAlreadyRunning("A sweep is already running")
            self._running = True
        self._token = token or CancellationToken()
        self._state = SweepState(mode=mode, total_pages=total_pages, requests_used=self.requests_used)
        if self.session_logging:
            self._session = SweepLogger(mode, logs_dir=self.config.logs_dir)
            self._session.set_config({**params, "judge": self.judge.name, "max_requests": self.max_requests})
            set_logger(self._session)
        logger.info("Starting %s sweep over %d pages", mode, total_pages)
        return self._state, SweepResult(mode=mode, pages_total=total_pages), self._token

    def _finish(self, result: SweepResult, outcome: SweepOutcome, error: str | None = None) -> SweepResult:
        """Refresh the invalid-page count and release the running state."""
        try:
            self.invalid_pages = len(self.store.pages_with_invalid_status())
            result.outcome = outcome
            result.error = error
            result.invalid_pages = self.invalid_pages
            result.requests_used_total = self.requests_used
            if self._session is not None:
                if outcome == "cancelled":
                    self._session.log_cancelled(self._token.reason if self._token else None)
                self._session.finalize(outcome, {
                    "requests_used": result.requests_used,
                    "invalid_pages": result.invalid_pages,
                })
        finally:
            if self._session is not None:
                set_logger(None)
                self._session = None
            self._state = None
            self._token = None
            with self._guard:
                self._running = False
        logger.info(
            "%s sweep %s: %d/%d pages, %d requests, %d invalid pages left",
            result.mode, outcome, result.pages_processed, result.pages_total,
            result.requests_used, result.invalid_pages,
        )
        return result

    def _count_request(self, state: SweepState, result: SweepResult) -> None:
        self.requests_used += 1
        result.requests_used += 1
        state.requests_used = self.requests_used

    def _notify(self, on_progress: ProgressCallback | None, state: SweepState) -> None:
        state.invalid_pages = self.invalid_pages
        if on_progress is not None:
            on_progress(state)

    def _log_budget(self) -> None:
        logger.warning("Request budget of %s reached, stopping sweep", self.max_requests)
        if self._session is not None:
            self._session.log_budget_exhausted(self.requests_used, self.max_requests)

    def _fail(self, result: SweepResult, error: Exception) -> SweepFailed:
        logger.error("%s sweep failed: %s", result.mode, error)
        if self._session is not None:
            self._session.log_error(type(error).__name__, str(error))
        self._finish(result, "failed", str(error))
        return SweepFailed(str(error), result)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _eligible(self, entries: list[LexiconEntry], include_valid: bool) -> list[LexiconEntry]:
        accepted = ("unchecked", "valid") if include_valid else ("unchecked",)
        return [e for e in entries if e.status in accepted]

    def collect_validation_entries(self, start: int, end: int,
                                   include_valid: bool = False) -> list[LexiconEntry]:
        """Entries a validation sweep over start..end would submit."""
        collected: list[LexiconEntry] = []
        for number in range(start, end + 1):
            _, entries = self.store.resolve_page(number)
            collected.extend(self._eligible(entries, include_valid))
        return collected

    def run_validation_sweep(
        self,
        start: int,
        end: int,
        include_valid: bool | None = None,
        batch_size: int | None = None,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SweepResult:
        """Validate every eligible entry on pages start..end (inclusive).

        Raises:
            SweepAlreadyRunning: If another sweep is active
            SweepFailed: If the judge or the store fails mid-sweep
        """
        if end < start:
            raise ValueError(f"Invalid page range {start}..{end}")
        if include_valid is None:
            include_valid = self.config.sweep.include_valid
        batch_size = batch_size or self.config.sweep.validation_batch_size

        state, result, token = self._begin("validate", end - start + 1, token, {
            "start": start, "end": end, "include_valid": include_valid, "batch_size": batch_size,
        })
        try:
            for number in range(start, end + 1):
                if token.cancelled:
                    return self._finish(result, "cancelled")
                if self._budget_reached():
                    self._log_budget()
                    return self._finish(result, "budget_exhausted")

                page_id, entries = self.store.resolve_page(number)
                state.current_page = page_id or str(number)
                eligible = self._eligible(entries, include_valid)
                if page_id and self._session is not None:
                    self._session.log_page_started(page_id, len(eligible))

                page_updated = 0
                exhausted = False
                for batch_index, batch in enumerate(_chunks(eligible, batch_size)):
                    if batch_index > 0 and self._budget_reached():
                        exhausted = True
                        break
                    judgments = self.judge.validate(batch)
                    self._count_request(state, result)

                    updates = [
                        ValidationUpdate(id=j.id, status=j.status, issue=j.issue)
                        for j in judgments
                    ]
                    if updates and not self.store.set_validation_statuses(updates):
                        raise _StoreWriteFailed(f"Could not store validation results for {state.current_page}")
                    result.entries_submitted += len(batch)
                    result.entries_updated += len(updates)
                    page_updated += len(updates)
                    if self._session is not None:
                        self._session.log_batch_applied(
                            state.current_page, batch_index, len(batch), len(updates),
                            valid=sum(1 for u in updates if u.status == "valid"),
                            invalid=sum(1 for u in updates if u.status == "invalid"),
                        )
                    self._notify(on_progress, state)

                state.processed_pages += 1
                result.pages_processed += 1
                self.invalid_pages = len(self.store.pages_with_invalid_status())
                if page_id and self._session is not None:
                    self._session.log_page_complete(page_id, page_updated)
                self._notify(on_progress, state)

                if exhausted:
                    self._log_budget()
                    return self._finish(result, "budget_exhausted")

            return self._finish(result, "completed")
        except (JudgeError, _StoreWriteFailed) as e:
            raise self._fail(result, e) from e
        except Exception as e:
            self._finish(result, "failed", str(e))
            raise

    # -------------------------------------------------------------------------
    # Correction
    # -------------------------------------------------------------------------

    def correction_pages(self, start: int = 0, end: int = 0) -> list[str]:
        """Pages holding invalid entries, optionally limited by page number.

        With start and end both 0 every such page is returned. Otherwise
        the range is start..end, where a missing start means 1 and a
        missing end means start.
        """
        pages = self.store.pages_with_invalid_status()
        if not start and not end:
            return pages

        low = max(1, start or 1)
        high = max(low, end or low)
        selected = []
        for page in pages:
            number = page_number_from_id(page)
            if number is not None and low <= number <= high:
                selected.append(page)
        return sorted(selected, key=lambda p: (page_number_from_id(p), p))

    def collect_correction_entries(self, start: int = 0, end: int = 0) -> list[LexiconEntry]:
        """Invalid entries a correction sweep over the range would submit."""
        collected: list[LexiconEntry] = []
        for page in self.correction_pages(start, end):
            collected.extend(self.store.invalid_by_page(page))
        return collected

    def run_correction_sweep(
        self,
        start: int = 0,
        end: int = 0,
        batch_size: int | None = None,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SweepResult:
        """Correct invalid entries on every page with any (optionally in a range)."""
        pages = self.correction_pages(start, end)
        return self._run_corrections(pages, batch_size, token, on_progress, {"start": start, "end": end})

    def run_corrections_on_pages(
        self,
        page_ids: Sequence[str],
        batch_size: int | None = None,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SweepResult:
        """Correct invalid entries on an explicit list of pages, in the given order."""
        return self._run_corrections(list(page_ids), batch_size, token, on_progress,
                                     {"pages": list(page_ids)})

    def _run_corrections(
        self,
        pages: list[str],
        batch_size: int | None,
        token: CancellationToken | None,
        on_progress: ProgressCallback | None,
        params: dict,
    ) -> SweepResult:
        batch_size = batch_size or self.config.sweep.correction_batch_size
        state, result, token = self._begin("correct", len(pages), token, {**params, "batch_size": batch_size})
        try:
            for page in pages:
                if token.cancelled:
                    return self._finish(result, "cancelled")
                if self._budget_reached():
                    self._log_budget()
                    return self._finish(result, "budget_exhausted")

                state.current_page = page
                stop = self._correct_page(page, batch_size, state, result, token, on_progress)
                state.processed_pages += 1
                result.pages_processed += 1
                self.invalid_pages = len(self.store.pages_with_invalid_status())
                self._notify(on_progress, state)

                if stop == "budget":
                    self._log_budget()
                    return self._finish(result, "budget_exhausted")
                if stop == "cancelled":
                    return self._finish(result, "cancelled")

            return self._finish(result, "completed")
        except (JudgeError, _StoreWriteFailed) as e:
            raise self._fail(result, e) from e
        except Exception as e:
            self._finish(result, "failed", str(e))
            raise

    def _correct_page(
        self,
        page: str,
        batch_size: int,
        state: SweepState,
        result: SweepResult,
        token: CancellationToken,
        on_progress: ProgressCallback | None,
    ) -> str | None:
        """Correct one page; returns "budget"/"cancelled" when the sweep must stop."""
        entries = self.store.invalid_by_page(page)
        if not entries:
            if self._session is not None:
                self._session.log_page_skipped(page, "no invalid entries")
            return None

        image = self.image_fetcher.fetch(entries[0])
        if image is None:
            logger.warning("Skipping corrections for %s: page image unavailable", page)
            result.skipped_pages.append(page)
            if self._session is not None:
                self._session.log_page_skipped(page, "image unavailable")
            return None

        if self._session is not None:
            self._session.log_page_started(page, len(entries))

        corrections: list[EntryCorrection] = []
        stop: str | None = None
        failure: JudgeError | None = None
        submitted = 0
        for batch_index, batch in enumerate(_chunks(entries, batch_size)):
            if batch_index > 0:
                if token.cancelled:
                    stop = "cancelled"
                    break
                if self._budget_reached():
                    stop = "budget"
                    break
            try:
                received = self.judge.correct(batch, image)
            except JudgeError as e:
                failure = e
                break
            self._count_request(state, result)
            corrections.extend(received)
            submitted += len(batch)
            if self._session is not None:
                self._session.log_batch_applied(page, batch_index, len(batch), len(received))
            self._notify(on_progress, state)

        # Everything the judge returned for this page is written as one unit
        updated = 0
        if corrections:
            updated = self.store.apply_corrections(corrections)
            if updated < 0:
                raise _StoreWriteFailed(f"Could not store corrections for {page}")
        result.entries_submitted += submitted
        result.entries_updated += updated
        if self._session is not None:
            self._session.log_page_complete(page, updated)

        if failure is not None:
            raise failure
        return stop

    # -------------------------------------------------------------------------
    # Extraction
    # -------------------------------------------------------------------------

    def run_extraction_sweep(
        self,
        pages: Sequence[str | PageImage],
        prompt: str | None = None,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SweepResult:
        """Read entries off page images and add them as unchecked rows.

        Pages are page ids, fetched through the image fetcher, or images
        already in hand. A page whose image cannot be fetched is skipped
        and a page whose extraction call fails is recorded in
        failed_pages; the sweep moves on in both cases. Quota exhaustion
        ends the sweep, since every remaining page would fail the same way.

        Raises:
            SweepAlreadyRunning: If another sweep is active
            SweepFailed: On quota exhaustion or a store write failure
        """
        names = [page.name if isinstance(page, PageImage) else page for page in pages]
        state, result, token = self._begin("extract", len(names), token, {"pages": names, "prompt": prompt})
        try:
            for page, name in zip(pages, names):
                if token.cancelled:
                    return self._finish(result, "cancelled")
                if self._budget_reached():
                    self._log_budget()
                    return self._finish(result, "budget_exhausted")

                state.current_page = name
                image = page if isinstance(page, PageImage) else self.image_fetcher.fetch_page(page)
                if image is None:
                    logger.warning("Skipping extraction for %s: page image unavailable", name)
                    result.skipped_pages.append(name)
                    if self._session is not None:
                        self._session.log_page_skipped(name, "image unavailable")
                else:
                    self._extract_page(image, prompt, state, result)

                state.processed_pages += 1
                result.pages_processed += 1
                self._notify(on_progress, state)

            return self._finish(result, "completed")
        except (JudgeQuotaExceeded, _StoreWriteFailed) as e:
            raise self._fail(result, e) from e
        except Exception as e:
            self._finish(result, "failed", str(e))
            raise

    def _extract_page(self, image: PageImage, prompt: str | None,
                      state: SweepState, result: SweepResult) -> None:
        if self._session is not None:
            self._session.log_page_started(image.name, 0)
        try:
            extracted = self.judge.extract(image, prompt)
        except JudgeQuotaExceeded:
            raise
        except JudgeError as e:
            logger.error("Extraction failed for %s: %s", image.name, e)
            result.failed_pages.append(image.name)
            if self._session is not None:
                self._session.log_error(type(e).__name__, str(e), {"page": image.name})
                self._session.log_page_skipped(image.name, "extraction failed")
            return
        self._count_request(state, result)

        now = now_millis()
        entries = []
        for item in extracted:
            record = {**item.model_dump(by_alias=True), "sourcePage": image.name, "sourceUrl": image.source_url}
            entry = build_extracted_entry(record, image.name, self.strongs, now)
            if entry is not None:
                entries.append(entry)
        if entries and not self.store.add_or_replace(entries):
            raise _StoreWriteFailed(f"Could not store extracted entries for {image.name}")

        result.entries_updated += len(entries)
        if self._session is not None:
            self._session.log_batch_applied(image.name, 0, 0, len(entries))
            self._session.log_page_complete(image.name, len(entries))
