import base64
import io
import pathlib
import sys

import pytest
from PIL import Image

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import app as app_module  # noqa: E402
from certificate_generator import CertificateGenerator  # noqa: E402
from models import Recipient, Template  # noqa: E402


class FakeRenderer:
    """Capture stand-in that records what it was asked to rasterise."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.captured = []

    async def capture(self, layout):
        name = layout.text_for('name')
        if name in self.fail_for:
            raise RuntimeError(f'capture failed for {name}')
        self.captured.append(layout)
        return Image.new('RGB', (100, 71), (255, 255, 255))


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def generator():
    return CertificateGenerator(scale=0.25)


@pytest.fixture
def template():
    return Template()


@pytest.fixture
def recipients():
    return [
        Recipient(id='a1', name='Jane Doe', email='jane@example.com'),
        Recipient(id='b2', name='John Smith'),
        Recipient(id='c3', name='Mary Ann O\'Neil', extra={'dept': 'Research'}),
    ]


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new('RGBA', (40, 20), (200, 30, 30, 255)).save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def png_data_url(png_bytes):
    return 'data:image/png;base64,' + base64.b64encode(png_bytes).decode('ascii')


@pytest.fixture
def app():
    flask_app = app_module.app
    flask_app.config.update(
        TESTING=True,
        CERT_SETTLE_DELAY_MS=0,
        CERT_CAPTURE_SCALE=0.25,
        GOOGLE_API_KEY='',
    )
    app_module.init_certificate_state(flask_app)
    yield flask_app
    ws = flask_app.extensions['certificates']
    if ws.bulk_thread is not None:
        ws.bulk_thread.join(timeout=30)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def workspace(app):
    return app.extensions['certificates']
