import io

import pytest
from PyPDF2 import PdfReader

from batch_export import BatchExportController, ExportState
from models import ProjectSnapshot, Recipient, Template
from participant_portal import (
    NOT_FOUND_MESSAGE,
    ConfigurationMissingError,
    ParticipantPortal,
    decode_portable_payload,
    encode_portable_payload,
)


@pytest.fixture
def portal(fake_renderer, template, recipients):
    snapshot = ProjectSnapshot(template=template, recipients=tuple(recipients), saved_at=0.0)
    return ParticipantPortal(snapshot, BatchExportController(fake_renderer, settle_delay=0))


def test_search_by_id_or_name(portal):
    assert portal.search('B2').found.name == 'John Smith'
    assert portal.search('jane doe').found.id == 'a1'
    miss = portal.search('nobody')
    assert miss.found is None
    assert miss.message == NOT_FOUND_MESSAGE


def test_search_without_published_config(fake_renderer):
    portal = ParticipantPortal(None, BatchExportController(fake_renderer, settle_delay=0))
    with pytest.raises(ConfigurationMissingError):
        portal.search('a1')


@pytest.mark.asyncio
async def test_download_renders_published_template(portal, recipients, fake_renderer):
    result = await portal.download(recipients[1])
    assert result.state == ExportState.COMPLETED
    assert result.filename == 'Certificate_John_Smith.pdf'
    assert len(PdfReader(io.BytesIO(result.content)).pages) == 1
    assert fake_renderer.captured[0].text_for('name') == 'John Smith'


def test_portable_payload_round_trip():
    template = Template()
    template.update_content(title='Hackathon Winner')
    template.add_overlay('data:image/png;base64,AAAA')
    template.add_signer_block(name='Ada')
    recipient = Recipient(id='r1', name='Zoë', extra={'team': 'Blue'})

    decoded_recipient, decoded_template = decode_portable_payload(encode_portable_payload(recipient, template))
    assert decoded_recipient.name == 'Zoë'
    assert decoded_recipient.extra == {'team': 'Blue'}
    assert decoded_template.content.title == 'Hackathon Winner'
    assert decoded_template.overlays == []
    assert decoded_template.content.signer_blocks == []


def test_bad_payload():
    with pytest.raises(ValueError):
        decode_portable_payload('not base64 at all!!')
