"""
Reconciler that converges Jenkins jobs to the declared repository records.

For every record the reconciler fetches the job currently stored on the
controller, renders the desired document and applies the minimal action:
create when absent, update when the documents differ, delete when the
record is skipped. Records are processed concurrently with a bounded
number of workers; failures are isolated per record.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from jobsync_common.controller import ControllerClient
from jobsync_common.errors import AuthError, ControllerError, InputError, JobSyncError
from jobsync_common.models import (
    GlobalSettings,
    JobOutcome,
    JobPath,
    JobVariant,
    MutationStatus,
    RepositoryRecord,
)
from jobsync_common.records import InvalidRow
from jobsync_render import documents_equivalent, render

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"
ABORTED = "run aborted after authentication failure"
NOT_PROCESSED = "record was not processed"

Entry = RepositoryRecord | InvalidRow


@dataclass(frozen=True)
class JobResult:
    """Terminal outcome for one managed job path."""

    record: Entry
    path: JobPath | None
    variant: JobVariant
    outcome: JobOutcome
    error: str | None = None

    @property
    def name(self) -> str:
        return str(self.path) if self.path else self.record.job_name


@dataclass
class RunReport:
    """Results of one run, in input order."""

    results: list[JobResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures()

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def failures(self) -> list[JobResult]:
        return [r for r in self.results if r.outcome is JobOutcome.FAILED]

    def counts(self) -> dict[JobOutcome, int]:
        counts = {outcome: 0 for outcome in JobOutcome}
        for result in self.results:
            counts[result.outcome] += 1
        return counts

    def summary(self) -> str:
        counts = self.counts()
        details = ", ".join(f"{counts[o]} {o.value}" for o in JobOutcome)
        return f"{len(self.results)} jobs: {details}"


class JobReconciler:
    """
    Converges the controller's jobs to a list of repository records.

    Each record is handled as a short sequence of blocking client calls
    (fetch, then act) run in worker threads; at most max_workers records
    are in flight at once. A single instance may run several times, but
    not concurrently.
    """

    def __init__(
        self,
        client: ControllerClient,
        settings: GlobalSettings,
        max_workers: int | None = None,
    ):
        """
        Initialize the reconciler.

        Args:
            client: Controller client used for all remote calls
            settings: Run-wide settings passed to the renderer
            max_workers: Records processed concurrently (1 runs sequentially)
        """
        self.client = client
        self.settings = settings
        self.max_workers = max(1, max_workers or settings.max_workers)

        self._stopping = False
        self._abort_reason: str | None = None
        self._credential_checks: dict[str, asyncio.Task] = {}

    def stop(self) -> None:
        """Stop starting new records; records already in flight complete."""
        if not self._stopping:
            logger.info("Stop requested, no further records will be started")
        self._stopping = True

    async def reconcile(
        self, records: Iterable[Entry], timeout: float | None = None
    ) -> RunReport:
        """
        Reconcile all records and report one result per managed job.

        Args:
            records: Records (or invalid row placeholders) in input order
            timeout: Seconds after which unstarted records are cancelled

        Returns:
            RunReport with a terminal outcome for every record
        """
        entries = list(records)
        self._abort_reason = None
        self._credential_checks = {}

        logger.info(
            f"Reconciling {len(entries)} records against {self.settings.controller_url} "
            f"with {self.max_workers} workers"
        )

        try:
            return await self._run(entries, timeout)
        finally:
            self._stopping = False

    async def _run(self, entries: list[Entry], timeout: float | None) -> RunReport:
        try:
            await asyncio.to_thread(self.client.authenticate)
        except Exception as e:
            if isinstance(e, JobSyncError):
                logger.error(f"Authentication failed, no records processed: {e}")
            else:
                logger.error(f"Unexpected error while authenticating: {e}", exc_info=True)
            return RunReport(
                [
                    result
                    for entry in entries
                    for result in self._fail_all(entry, f"authentication failed: {e}")
                ]
            )

        slots: list[list[JobResult] | None] = [None] * len(entries)
        pending = self._screen(entries, slots)

        semaphore = asyncio.Semaphore(self.max_workers)

        async def worker(index: int) -> None:
            async with semaphore:
                entry = entries[index]
                if self._abort_reason:
                    slots[index] = self._fail_all(entry, self._abort_reason)
                elif self._stopping:
                    slots[index] = self._fail_all(entry, CANCELLED)
                else:
                    slots[index] = await self.reconcile_record(entry)

        tasks = {index: asyncio.create_task(worker(index)) for index in pending}
        if tasks:
            _, not_done = await asyncio.wait(tasks.values(), timeout=timeout)
            if not_done:
                logger.warning(
                    f"Timeout of {timeout}s elapsed with {len(not_done)} records "
                    "outstanding, cancelling"
                )
                self.stop()
                await asyncio.wait(not_done)

        for index, task in tasks.items():
            if slots[index] is not None:
                continue
            error = None if task.cancelled() else task.exception()
            logger.error(
                f"Record {entries[index].job_name} ended without a result: {error}"
            )
            message = f"unexpected error: {error}" if error else NOT_PROCESSED
            slots[index] = self._fail_all(entries[index], message)

        report = RunReport([result for slot in slots if slot for result in slot])
        logger.info(f"Reconciliation finished: {report.summary()}")
        return report

    def _screen(
        self, entries: list[Entry], slots: list[list[JobResult] | None]
    ) -> list[int]:
        """
        Validate entries and detect job path collisions.

        Fills slots for entries that must not reach the controller and
        returns the indices of the remaining ones.
        """
        claims: dict[JobPath, list[int]] = defaultdict(list)
        for index, entry in enumerate(entries):
            if isinstance(entry, InvalidRow):
                slots[index] = self._fail_all(entry, str(entry.error))
                continue
            try:
                entry.validate()
            except InputError as e:
                logger.warning(f"Record {entry.repo_url or '<blank>'} is invalid: {e}")
                slots[index] = self._fail_all(entry, str(e))
                continue
            for variant in entry.variants():
                claims[entry.job_path(self.settings, variant)].append(index)

        for path, indices in claims.items():
            if len(indices) < 2:
                continue
            urls = ", ".join(entries[i].repo_url for i in indices)
            message = f"job path {path} is claimed by several records ({urls})"
            logger.error(f"Identity collision: {message}")
            for index in indices:
                slots[index] = self._fail_all(entries[index], message)

        return [index for index, slot in enumerate(slots) if slot is None]

    def _fail_all(self, entry: Entry, error: str) -> list[JobResult]:
        if isinstance(entry, InvalidRow):
            return [JobResult(entry, None, JobVariant.PRIMARY, JobOutcome.FAILED, error)]
        results = []
        for variant in entry.variants():
            # no usable path for a record without a repository path
            path = entry.job_path(self.settings, variant) if entry.repo_path else None
            results.append(JobResult(entry, path, variant, JobOutcome.FAILED, error))
        return results

    async def reconcile_record(self, entry: Entry) -> list[JobResult]:
        """
        Reconcile one record: its primary job and, when requested, its
        validate job. Never raises; errors become FAILED results.
        """
        if isinstance(entry, InvalidRow):
            return self._fail_all(entry, str(entry.error))
        try:
            entry.validate()
            if self.settings.verify_credentials and not entry.skip:
                await self._verify_credentials(entry)
        except JobSyncError as e:
            if isinstance(e, AuthError) and e.status != 403:
                self._abort(e)
            logger.error(f"Record {entry.repo_url} failed: {e}")
            return self._fail_all(entry, str(e))
        except Exception as e:
            logger.error(
                f"Unexpected error reconciling record {entry.repo_url}: {e}", exc_info=True
            )
            return self._fail_all(entry, f"unexpected error: {e}")

        results = []
        for variant in entry.variants():
            if self._abort_reason:
                path = entry.job_path(self.settings, variant)
                results.append(
                    JobResult(entry, path, variant, JobOutcome.FAILED, self._abort_reason)
                )
                continue
            results.append(await self._reconcile_variant(entry, variant))
        return results

    async def _reconcile_variant(
        self, record: RepositoryRecord, variant: JobVariant
    ) -> JobResult:
        path = record.job_path(self.settings, variant)
        try:
            outcome = await self._converge(record, variant, path)
        except AuthError as e:
            if e.status != 403:
                self._abort(e)
            logger.error(f"Job {path} failed: {e}")
            return JobResult(record, path, variant, JobOutcome.FAILED, str(e))
        except JobSyncError as e:
            logger.error(f"Job {path} failed: {e}")
            return JobResult(record, path, variant, JobOutcome.FAILED, str(e))
        except Exception as e:
            logger.error(f"Unexpected error reconciling job {path}: {e}", exc_info=True)
            return JobResult(
                record, path, variant, JobOutcome.FAILED, f"unexpected error: {e}"
            )

        logger.info(f"Job {path}: {outcome.value}")
        return JobResult(record, path, variant, outcome)

    def _abort(self, error: AuthError) -> None:
        if self._abort_reason is None:
            logger.error(f"Credentials rejected, aborting remaining records: {error}")
            self._abort_reason = ABORTED

    async def _converge(
        self, record: RepositoryRecord, variant: JobVariant, path: JobPath
    ) -> JobOutcome:
        """
        Apply the minimal action that makes the job at path match the record.

        State per path: ABSENT -create-> PRESENT, PRESENT -update-> PRESENT,
        PRESENT -delete-> ABSENT, ABSENT -skip-> ABSENT.
        """
        current = await asyncio.to_thread(self.client.get_job, path)

        if record.skip:
            if not current.exists:
                return JobOutcome.UNCHANGED
            status = await asyncio.to_thread(self.client.delete_job, path)
            if status is MutationStatus.NOT_FOUND:
                logger.debug(f"Job {path} disappeared before it was deleted")
            return JobOutcome.DELETED

        definition = render(record, self.settings, variant)

        if not current.exists:
            if path.folder_segments:
                await asyncio.to_thread(self.client.ensure_folder, path.folder)
            status = await asyncio.to_thread(self.client.create_job, path, definition)
            if status is MutationStatus.OK:
                return JobOutcome.CREATED
            # created by someone else since the fetch
            logger.info(f"Job {path} already exists, comparing with stored document")
            current = await asyncio.to_thread(self.client.get_job, path)

        if documents_equivalent(current.xml, definition.xml):
            return JobOutcome.UNCHANGED

        status = await asyncio.to_thread(self.client.update_job, path, definition)
        if status is MutationStatus.OK:
            return JobOutcome.UPDATED

        logger.info(f"Job {path} disappeared before it was updated, recreating")
        status = await asyncio.to_thread(self.client.create_job, path, definition)
        if status is MutationStatus.OK:
            return JobOutcome.CREATED
        raise ControllerError(f"Job {path} could not be recreated ({status.value})")

    async def _verify_credentials(self, record: RepositoryRecord) -> None:
        """
        Check that every credential id the record references exists.

        Raises:
            InputError: If any referenced id is missing on the controller
        """
        ids = [
            record.publish_credentials_id,
            record.git_credentials_id,
            *(credential.name for credential in record.extra_credentials),
        ]
        missing = []
        for credentials_id in dict.fromkeys(i for i in ids if i):
            if credentials_id not in self._credential_checks:
                self._credential_checks[credentials_id] = asyncio.create_task(
                    asyncio.to_thread(self.client.credential_exists, credentials_id)
                )
            if not await self._credential_checks[credentials_id]:
                missing.append(credentials_id)
        if missing:
            raise InputError(
                f"Credentials not found on controller: {', '.join(missing)}"
            )
