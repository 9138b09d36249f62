import io
import logging
import re
import zipfile

from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from certificate_layout import PAGE_HEIGHT, PAGE_WIDTH

logger = logging.getLogger(__name__)

PAGE_SIZE = (PAGE_WIDTH, PAGE_HEIGHT)
JPEG_QUALITY = 85
ARCHIVE_NAME = 'Certificates_Archive.zip'


class SinkEncodeError(RuntimeError):
    pass


_WHITESPACE_RE = re.compile(r'\s+')


def certificate_filename(name) -> str:
    safe_name = _WHITESPACE_RE.sub('_', str(name or ''))
    return f'Certificate_{safe_name}.pdf'


def bulk_pdf_filename(day) -> str:
    return f'All_Certificates_{day.isoformat()}.pdf'


def make_document():
    buffer = io.BytesIO()
    doc = canvas.Canvas(buffer, pagesize=PAGE_SIZE)
    doc.setTitle('Certificates')
    return doc, buffer


def add_page(doc, image, quality=JPEG_QUALITY):
    """Draw a captured raster as one full-bleed JPEG page."""
    try:
        jpeg = io.BytesIO()
        image.convert('RGB').save(jpeg, format='JPEG', quality=int(quality))
        jpeg.seek(0)
        doc.drawImage(ImageReader(jpeg), 0, 0, width=PAGE_WIDTH, height=PAGE_HEIGHT)
        doc.showPage()
    except Exception as e:
        raise SinkEncodeError(f'Could not add page: {e}') from e


def finish_document(doc, buffer) -> bytes:
    try:
        doc.save()
    except Exception as e:
        raise SinkEncodeError(f'Could not encode PDF: {e}') from e
    return buffer.getvalue()


def single_page_pdf(image, quality=JPEG_QUALITY) -> bytes:
    doc, buffer = make_document()
    add_page(doc, image, quality=quality)
    return finish_document(doc, buffer)


def encode_archive(entries) -> bytes:
    """entries: iterable of (arcname, bytes) in archive order."""
    zip_buffer = io.BytesIO()
    try:
        with zipfile.ZipFile(zip_buffer, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
            for arcname, content in entries:
                zf.writestr(arcname, content)
    except (zipfile.BadZipFile, ValueError, OSError) as e:
        raise SinkEncodeError(f'Could not encode archive: {e}') from e
    return zip_buffer.getvalue()


class PdfDocumentSink:
    """One multi-page PDF, one page per recipient."""

    kind = 'single-pdf'

    def __init__(self, filename, quality=JPEG_QUALITY):
        self.filename = filename
        self.quality = quality
        self.pages = 0
        self._doc, self._buffer = make_document()

    def add(self, recipient, image):
        add_page(self._doc, image, quality=self.quality)
        self.pages += 1

    def finalize(self) -> bytes:
        content = finish_document(self._doc, self._buffer)
        logger.info('Encoded %s with %d page(s)', self.filename, self.pages)
        return content


class ZipArchiveSink:
    """ZIP of one-page PDFs, one entry per recipient."""

    kind = 'zip'

    def __init__(self, filename=ARCHIVE_NAME, quality=JPEG_QUALITY):
        self.filename = filename
        self.quality = quality
        self.entries = []
        self._used_names = set()

    def _unique_name(self, name):
        candidate = name
        stem = name[:-4] if name.lower().endswith('.pdf') else name
        n = 2
        while candidate in self._used_names:
            candidate = f'{stem}_{n}.pdf'
            n += 1
        self._used_names.add(candidate)
        return candidate

    def add(self, recipient, image):
        content = single_page_pdf(image, quality=self.quality)
        self.entries.append((self._unique_name(certificate_filename(recipient.name)), content))

    def finalize(self) -> bytes:
        content = encode_archive(self.entries)
        logger.info('Encoded %s with %d entr%s', self.filename, len(self.entries), 'y' if len(self.entries) == 1 else 'ies')
        return content
