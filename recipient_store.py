import io
import logging
from urllib.parse import quote

import pandas as pd

from models import (
    RECIPIENT_STATUSES,
    UNKNOWN_PARTICIPANT,
    Recipient,
    new_token,
)

logger = logging.getLogger(__name__)

RECOGNIZED_COLUMNS = ('id', 'name', 'rank', 'role', 'email')


class RecipientValidationError(ValueError):
    pass


class CsvImportError(ValueError):
    pass


def _norm(v):
    if v is None:
        return ''
    try:
        if pd.isna(v):
            return ''
    except (TypeError, ValueError):
        pass
    return str(v)


class RecipientStore:
    """Ordered recipient list. Manual adds go to the front, imports to the back."""

    def __init__(self, recipients=None):
        self._recipients = list(recipients or [])

    def __len__(self):
        return len(self._recipients)

    def __iter__(self):
        return iter(list(self._recipients))

    def all(self):
        return list(self._recipients)

    def get(self, recipient_id):
        for recipient in self._recipients:
            if recipient.id == recipient_id:
                return recipient
        return None

    def add_one(self, name, id=None, rank=None, role=None, email=None, **extra) -> Recipient:
        if not name:
            raise RecipientValidationError('Name is required')
        recipient = Recipient(
            id=id or new_token(),
            name=name,
            email=email,
            rank=rank,
            role=role,
            extra={str(k): str(v) for k, v in extra.items() if v is not None},
        )
        self._recipients.insert(0, recipient)
        return recipient

    def add_bulk(self, records) -> list:
        added = []
        for row in records:
            normalized = {}
            for key, value in dict(row).items():
                normalized[str(key).lower()] = _norm(value)

            extra = {
                k: v for k, v in normalized.items()
                if k not in RECOGNIZED_COLUMNS and k != 'status'
            }
            added.append(Recipient(
                id=normalized.get('id') or new_token(),
                name=normalized.get('name') or UNKNOWN_PARTICIPANT,
                email=normalized.get('email') or '',
                status='pending',
                rank=normalized.get('rank'),
                role=normalized.get('role'),
                extra=extra,
            ))
        self._recipients.extend(added)
        logger.info('Imported %d recipients (store size %d)', len(added), len(self._recipients))
        return added

    def import_csv(self, source) -> list:
        """Append recipients from CSV text, bytes, or a file object with a header row."""
        if isinstance(source, bytes):
            source = io.BytesIO(source)
        elif isinstance(source, str):
            source = io.StringIO(source)
        try:
            df = pd.read_csv(source, dtype=str, keep_default_na=False)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise CsvImportError(f'Could not read CSV: {e}')
        return self.add_bulk(df.to_dict(orient='records'))

    def remove(self, recipient_id) -> bool:
        for idx, recipient in enumerate(self._recipients):
            if recipient.id == recipient_id:
                del self._recipients[idx]
                return True
        return False

    def find_by_id_or_name(self, query):
        return find_by_id_or_name(self._recipients, query)

    def set_status(self, recipient_id, status) -> Recipient:
        if status not in RECIPIENT_STATUSES:
            raise RecipientValidationError(f'Unknown status: {status!r}')
        recipient = self.get(recipient_id)
        if recipient is None:
            raise RecipientValidationError(f'Recipient not found: {recipient_id}')
        recipient.status = status
        return recipient

    def replace_all(self, recipients):
        self._recipients = list(recipients)


def find_by_id_or_name(recipients, query):
    needle = str(query or '').lower()
    if not needle:
        return None
    for recipient in recipients:
        if recipient.id.lower() == needle or recipient.name.lower() == needle:
            return recipient
    return None


def mailto_link(recipient, subject, body='') -> str:
    """Local mail compose URL for a recipient. Nothing is sent."""
    address = quote(recipient.email or '', safe='@')
    query = f"subject={quote(subject or '')}"
    if body:
        query += f"&body={quote(body)}"
    return f'mailto:{address}?{query}'
