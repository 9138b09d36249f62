"""Sequential render-and-capture of certificates into PDF / ZIP outputs.

The controller owns the only mutable render target (the active recipient)
and the progress counters. Recipients are processed one at a time, in
order; cancellation is checked between recipients only, so a capture
already in flight always runs to completion.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from certificate_layout import render_template
from export_sinks import (
    JPEG_QUALITY,
    PdfDocumentSink,
    SinkEncodeError,
    ZipArchiveSink,
    bulk_pdf_filename,
    certificate_filename,
    single_page_pdf,
)

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 0.25


class ExportInProgressError(RuntimeError):
    pass


class EmptyExportError(ValueError):
    pass


class ExportState(str, Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


class SinkKind(str, Enum):
    SINGLE_PDF = 'single-pdf'
    ZIP = 'zip'


class CancellationToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()


@dataclass
class ExportJob:
    total: int
    token: CancellationToken
    current: int = 0
    active_recipient: object = None

    @property
    def cancelled(self):
        return self.token.cancelled


@dataclass(frozen=True)
class ExportProgress:
    state: ExportState
    current: int = 0
    total: int = 0
    active_recipient: object = None

    def to_dict(self):
        active = self.active_recipient
        return {
            'state': self.state.value,
            'current': self.current,
            'total': self.total,
            'active_recipient': {'id': active.id, 'name': active.name} if active is not None else None,
        }


@dataclass
class ExportResult:
    state: ExportState
    kind: str
    total: int
    processed: int = 0
    filename: Optional[str] = None
    content: Optional[bytes] = None
    skipped: list = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self):
        return self.state == ExportState.COMPLETED

    def to_dict(self):
        return {
            'state': self.state.value,
            'kind': self.kind,
            'total': self.total,
            'processed': self.processed,
            'filename': self.filename,
            'skipped': list(self.skipped),
            'error': self.error,
        }


def _utc_today():
    return datetime.now(timezone.utc).date()


class BatchExportController:
    def __init__(self, renderer, settle_delay=DEFAULT_SETTLE_DELAY, quality=JPEG_QUALITY, sleep=None, today=None):
        self.renderer = renderer
        self.settle_delay = float(settle_delay)
        self.quality = quality
        self._sleep = sleep or asyncio.sleep
        self._today = today or _utc_today
        self._lock = threading.Lock()
        self._listeners = []
        self._state = ExportState.IDLE
        self._job = None
        self.last_result = None

    # Observation

    def add_listener(self, callback):
        self._listeners.append(callback)

    @property
    def state(self):
        return self._state

    @property
    def is_running(self):
        return self._state == ExportState.RUNNING

    @staticmethod
    def _progress_of(job, state):
        if job is None:
            return ExportProgress(state)
        return ExportProgress(state, job.current, job.total, job.active_recipient)

    def progress(self) -> ExportProgress:
        with self._lock:
            return self._progress_of(self._job, self._state)

    def _publish(self, snapshot=None):
        if snapshot is None:
            snapshot = self.progress()
        for callback in list(self._listeners):
            callback(snapshot)

    def cancel(self) -> bool:
        job = self._job
        if job is None:
            return False
        job.token.cancel()
        logger.info('Cancellation requested at %d/%d', job.current, job.total)
        return True

    # Job lifecycle. conclude/reset only change state while the job still
    # owns the controller.

    def _begin(self, total, token):
        with self._lock:
            if self._state == ExportState.RUNNING:
                raise ExportInProgressError('An export is already running')
            job = ExportJob(total=total, token=token or CancellationToken())
            self._job = job
            self._state = ExportState.RUNNING
            self.last_result = None
            snapshot = self._progress_of(job, self._state)
        self._publish(snapshot)
        return job

    def _conclude(self, job, result):
        with self._lock:
            owner = self._job is job
            if owner:
                self._state = result.state
                self.last_result = result
                snapshot = self._progress_of(job, result.state)
        if owner:
            self._publish(snapshot)
        return result

    def _reset(self, job):
        with self._lock:
            if self._job is not job:
                return
            self._job = None
            self._state = ExportState.IDLE
        self._publish(ExportProgress(ExportState.IDLE))

    async def _render_and_capture(self, job, template, recipient):
        job.active_recipient = recipient
        layout = render_template(template, recipient)
        # let the render target settle before it is captured
        await self._sleep(self.settle_delay)
        return await self.renderer.capture(layout)

    # Exports

    async def start_single_export(self, template, recipient) -> ExportResult:
        template = template.snapshot()
        job = self._begin(1, None)
        kind = SinkKind.SINGLE_PDF.value
        filename = certificate_filename(recipient.name)
        try:
            try:
                image = await self._render_and_capture(job, template, recipient)
                content = single_page_pdf(image, quality=self.quality)
            except Exception as e:
                logger.exception('Single export failed for recipient %s', recipient.id)
                return self._conclude(job, ExportResult(ExportState.FAILED, kind, 1, error=str(e)))
            job.current = 1
            self._publish()
            return self._conclude(job, ExportResult(
                ExportState.COMPLETED, kind, 1, processed=1, filename=filename, content=content,
            ))
        finally:
            self._reset(job)

    def _make_sink(self, sink_kind):
        if sink_kind == SinkKind.ZIP:
            return ZipArchiveSink(quality=self.quality)
        return PdfDocumentSink(bulk_pdf_filename(self._today()), quality=self.quality)

    async def start_bulk_export(self, template, recipients, sink_kind=SinkKind.SINGLE_PDF, token=None) -> ExportResult:
        recipients = list(recipients)
        if not recipients:
            raise EmptyExportError('There are no recipients to export')
        sink_kind = SinkKind(sink_kind)
        template = template.snapshot()
        job = self._begin(len(recipients), token)
        kind = sink_kind.value
        try:
            sink = self._make_sink(sink_kind)
            skipped = []
            for recipient in recipients:
                if job.cancelled:
                    logger.info('Bulk %s export cancelled after %d/%d', kind, job.current, job.total)
                    return self._conclude(job, ExportResult(
                        ExportState.CANCELLED, kind, job.total, processed=job.current, skipped=skipped,
                    ))

                try:
                    image = await self._render_and_capture(job, template, recipient)
                except Exception:
                    logger.exception('Capture failed for recipient %s, skipping', recipient.id)
                    skipped.append(recipient.id)
                else:
                    try:
                        sink.add(recipient, image)
                    except SinkEncodeError as e:
                        logger.error('Bulk %s export aborted at recipient %s: %s', kind, recipient.id, e)
                        return self._conclude(job, ExportResult(
                            ExportState.FAILED, kind, job.total, processed=job.current, skipped=skipped, error=str(e),
                        ))

                job.current += 1
                self._publish()

            if len(skipped) == job.total:
                logger.error('Bulk %s export produced no certificates, all %d capture(s) failed', kind, job.total)
                return self._conclude(job, ExportResult(
                    ExportState.FAILED, kind, job.total, processed=job.current, skipped=skipped,
                    error='No certificate could be rendered',
                ))

            try:
                content = sink.finalize()
            except SinkEncodeError as e:
                logger.error('Bulk %s export failed while finalising: %s', kind, e)
                return self._conclude(job, ExportResult(
                    ExportState.FAILED, kind, job.total, processed=job.current, skipped=skipped, error=str(e),
                ))

            if skipped:
                logger.warning('Bulk %s export skipped %d recipient(s)', kind, len(skipped))
            return self._conclude(job, ExportResult(
                ExportState.COMPLETED, kind, job.total, processed=job.current,
                filename=sink.filename, content=content, skipped=skipped,
            ))
        finally:
            self._reset(job)
