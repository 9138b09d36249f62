import base64
import binascii
import json
from dataclasses import asdict, dataclass
from typing import Optional

from models import Recipient, Template
from recipient_store import find_by_id_or_name

NOT_FOUND_MESSAGE = 'No certificate found for this ID or Name.'


class ConfigurationMissingError(LookupError):
    pass


@dataclass(frozen=True)
class SearchResult:
    query: str
    found: Optional[Recipient] = None

    @property
    def message(self):
        return '' if self.found is not None else NOT_FOUND_MESSAGE


class ParticipantPortal:
    """Read-only participant surface over a published project snapshot."""

    def __init__(self, snapshot, controller):
        self.snapshot = snapshot
        self.controller = controller

    def _require_snapshot(self):
        if self.snapshot is None:
            raise ConfigurationMissingError('No event configuration has been published yet.')
        return self.snapshot

    def search(self, query) -> SearchResult:
        snapshot = self._require_snapshot()
        return SearchResult(query=query, found=find_by_id_or_name(snapshot.recipients, query))

    async def download(self, recipient):
        snapshot = self._require_snapshot()
        return await self.controller.start_single_export(snapshot.template, recipient)


def encode_portable_payload(recipient, template) -> str:
    """URL-safe claim payload with the recipient and the text parts of a template (no images)."""
    payload = {
        'recipient': recipient.to_dict(),
        'design': asdict(template.design),
        'content': {k: v for k, v in asdict(template.content).items() if k != 'signer_blocks'},
    }
    raw = json.dumps(payload, ensure_ascii=False, separators=(',', ':')).encode('utf-8')
    return base64.urlsafe_b64encode(raw).decode('ascii')


def decode_portable_payload(data):
    try:
        payload = json.loads(base64.urlsafe_b64decode(str(data).encode('ascii')).decode('utf-8'))
        recipient = Recipient.from_dict(payload.get('recipient') or {})
        template = Template.from_dict({'design': payload.get('design'), 'content': payload.get('content')})
    except (binascii.Error, UnicodeError, ValueError, TypeError, AttributeError) as e:
        raise ValueError(f'Invalid claim payload: {e}') from e
    return recipient, template
