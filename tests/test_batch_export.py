import asyncio
import io
import threading
import zipfile
from datetime import date

import pytest
from PyPDF2 import PdfReader

from batch_export import (
    BatchExportController,
    CancellationToken,
    EmptyExportError,
    ExportInProgressError,
    ExportState,
    SinkKind,
)
from conftest import FakeRenderer


def _controller(renderer, **kwargs):
    kwargs.setdefault('settle_delay', 0)
    return BatchExportController(renderer, today=lambda: date(2024, 3, 9), **kwargs)


@pytest.mark.asyncio
async def test_single_export(fake_renderer, template, recipients):
    controller = _controller(fake_renderer)
    result = await controller.start_single_export(template, recipients[2])
    assert result.state == ExportState.COMPLETED
    assert result.filename == "Certificate_Mary_Ann_O'Neil.pdf"
    assert len(PdfReader(io.BytesIO(result.content)).pages) == 1
    assert controller.state == ExportState.IDLE


@pytest.mark.asyncio
async def test_single_export_failure_is_reported(template, recipients):
    controller = _controller(FakeRenderer(fail_for={'Jane Doe'}))
    result = await controller.start_single_export(template, recipients[0])
    assert result.state == ExportState.FAILED
    assert 'capture failed' in result.error
    assert result.content is None
    assert controller.state == ExportState.IDLE


@pytest.mark.asyncio
async def test_bulk_pdf_one_page_per_recipient_in_order(fake_renderer, template, recipients):
    controller = _controller(fake_renderer)
    result = await controller.start_bulk_export(template, recipients, SinkKind.SINGLE_PDF)
    assert result.state == ExportState.COMPLETED
    assert result.filename == 'All_Certificates_2024-03-09.pdf'
    assert len(PdfReader(io.BytesIO(result.content)).pages) == 3
    assert [layout.text_for('name') for layout in fake_renderer.captured] == [r.name for r in recipients]


@pytest.mark.asyncio
async def test_bulk_zip_entries(fake_renderer, template, recipients):
    controller = _controller(fake_renderer)
    result = await controller.start_bulk_export(template, recipients, 'zip')
    assert result.filename == 'Certificates_Archive.zip'
    with zipfile.ZipFile(io.BytesIO(result.content)) as zf:
        assert zf.namelist() == [
            'Certificate_Jane_Doe.pdf',
            'Certificate_John_Smith.pdf',
            "Certificate_Mary_Ann_O'Neil.pdf",
        ]


@pytest.mark.asyncio
async def test_progress_states_and_counters(fake_renderer, template, recipients):
    controller = _controller(fake_renderer)
    seen = []
    controller.add_listener(seen.append)
    await controller.start_bulk_export(template, recipients, SinkKind.ZIP)

    states = [p.state for p in seen]
    assert states[0] == ExportState.RUNNING
    assert states[-2:] == [ExportState.COMPLETED, ExportState.IDLE]
    currents = [p.current for p in seen if p.state == ExportState.RUNNING]
    assert currents == [0, 1, 2, 3]
    assert all(p.total == 3 for p in seen if p.state == ExportState.RUNNING)
    assert controller.progress().to_dict() == {'state': 'idle', 'current': 0, 'total': 0, 'active_recipient': None}


@pytest.mark.asyncio
async def test_cancel_between_recipients(template, recipients):
    token = CancellationToken()

    class CancellingRenderer(FakeRenderer):
        async def capture(self, layout):
            image = await super().capture(layout)
            if len(self.captured) == 2:
                token.cancel()
            return image

    renderer = CancellingRenderer()
    controller = _controller(renderer)
    result = await controller.start_bulk_export(template, recipients, SinkKind.SINGLE_PDF, token=token)
    assert result.state == ExportState.CANCELLED
    assert result.processed == 2
    assert result.content is None
    assert len(renderer.captured) == 2
    assert controller.state == ExportState.IDLE


@pytest.mark.asyncio
async def test_capture_failure_skips_recipient(template, recipients):
    renderer = FakeRenderer(fail_for={'John Smith'})
    controller = _controller(renderer)
    result = await controller.start_bulk_export(template, recipients, SinkKind.SINGLE_PDF)
    assert result.state == ExportState.COMPLETED
    assert result.skipped == ['b2']
    assert result.processed == 3
    assert len(PdfReader(io.BytesIO(result.content)).pages) == 2


@pytest.mark.asyncio
async def test_encode_failure_fails_the_export(template, recipients):
    class BrokenImageRenderer(FakeRenderer):
        async def capture(self, layout):
            return object()

    controller = _controller(BrokenImageRenderer())
    result = await controller.start_bulk_export(template, recipients, SinkKind.ZIP)
    assert result.state == ExportState.FAILED
    assert result.content is None
    assert result.error
    assert controller.last_result is result


@pytest.mark.asyncio
async def test_second_export_rejected_while_running(template, recipients):
    controller = None
    rejected = []

    class ReentrantRenderer(FakeRenderer):
        async def capture(self, layout):
            if not rejected:
                with pytest.raises(ExportInProgressError):
                    await controller.start_single_export(template, recipients[0])
                rejected.append(True)
            return await super().capture(layout)

    controller = _controller(ReentrantRenderer())
    result = await controller.start_bulk_export(template, recipients, SinkKind.SINGLE_PDF)
    assert rejected == [True]
    assert result.state == ExportState.COMPLETED


@pytest.mark.asyncio
async def test_template_is_snapshotted_at_start(template, recipients):
    class EditingRenderer(FakeRenderer):
        async def capture(self, layout):
            template.update_content(title='Edited mid-export')
            return await super().capture(layout)

    renderer = EditingRenderer()
    controller = _controller(renderer)
    await controller.start_bulk_export(template, recipients, SinkKind.SINGLE_PDF)
    assert {layout.text_for('title') for layout in renderer.captured} == {'Certificate of Achievement'}


@pytest.mark.asyncio
async def test_settle_delay_precedes_each_capture(template, recipients):
    calls = []

    async def fake_sleep(delay):
        calls.append(('sleep', delay))

    class RecordingRenderer(FakeRenderer):
        async def capture(self, layout):
            calls.append(('capture', layout.text_for('name')))
            return await super().capture(layout)

    controller = BatchExportController(RecordingRenderer(), settle_delay=0.25, sleep=fake_sleep)
    await controller.start_bulk_export(template, recipients[:2], SinkKind.ZIP)
    assert calls == [
        ('sleep', 0.25), ('capture', 'Jane Doe'),
        ('sleep', 0.25), ('capture', 'John Smith'),
    ]


@pytest.mark.asyncio
async def test_empty_and_unknown_sink_rejected(fake_renderer, template, recipients):
    controller = _controller(fake_renderer)
    with pytest.raises(EmptyExportError):
        await controller.start_bulk_export(template, [], SinkKind.ZIP)
    with pytest.raises(ValueError):
        await controller.start_bulk_export(template, recipients, 'tarball')
    assert controller.state == ExportState.IDLE


@pytest.mark.asyncio
async def test_bulk_fails_when_every_capture_fails(template, recipients):
    renderer = FakeRenderer(fail_for={r.name for r in recipients})
    controller = _controller(renderer)
    result = await controller.start_bulk_export(template, recipients, SinkKind.SINGLE_PDF)
    assert result.state == ExportState.FAILED
    assert result.skipped == ['a1', 'b2', 'c3']
    assert result.content is None
    assert result.error == 'No certificate could be rendered'


def test_finished_export_does_not_reset_a_newer_one(template, recipients):
    armed = threading.Event()
    bulk_capturing = threading.Event()
    release = threading.Event()
    outcome = {}

    class GatedRenderer(FakeRenderer):
        async def capture(self, layout):
            if armed.is_set():
                bulk_capturing.set()
                release.wait(timeout=5)
            return await super().capture(layout)

    controller = _controller(GatedRenderer())

    def run_bulk():
        outcome['bulk'] = asyncio.run(controller.start_bulk_export(template, recipients, SinkKind.ZIP))

    worker = threading.Thread(target=run_bulk, daemon=True)

    def start_bulk_once_single_completes(progress):
        # the single export has concluded but not yet reset
        if progress.state == ExportState.COMPLETED and progress.total == 1 and not armed.is_set():
            armed.set()
            worker.start()
            assert bulk_capturing.wait(timeout=5)

    controller.add_listener(start_bulk_once_single_completes)
    single = asyncio.run(controller.start_single_export(template, recipients[0]))
    assert single.state == ExportState.COMPLETED

    try:
        assert controller.state == ExportState.RUNNING
        progress = controller.progress()
        assert progress.total == 3
        assert progress.active_recipient.id == 'a1'
        with pytest.raises(ExportInProgressError):
            asyncio.run(controller.start_single_export(template, recipients[1]))
    finally:
        release.set()
        worker.join(timeout=10)

    assert outcome['bulk'].state == ExportState.COMPLETED
    assert controller.state == ExportState.IDLE
    assert controller.last_result is outcome['bulk']
