from flask import Flask
import copy
import logging
import os
import sys
import threading
import time

from dotenv import load_dotenv

from batch_export import BatchExportController
from certificate_generator import CertificateGenerator
from models import ProjectSnapshot, Template
from recipient_store import RecipientStore

if __name__ == '__main__':
    sys.modules['app'] = sys.modules[__name__]

load_dotenv()

app = Flask(__name__)

# Configuration
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key')
app.config['MAX_CONTENT_LENGTH'] = int(os.environ.get('MAX_CONTENT_LENGTH', str(16 * 1024 * 1024)) or 16 * 1024 * 1024)
app.config['CERT_SETTLE_DELAY_MS'] = int(os.environ.get('CERT_SETTLE_DELAY_MS', '250') or 250)
app.config['CERT_CAPTURE_SCALE'] = float(os.environ.get('CERT_CAPTURE_SCALE', '1.5') or 1.5)
app.config['CERT_JPEG_QUALITY'] = int(os.environ.get('CERT_JPEG_QUALITY', '85') or 85)
app.config['CERT_FONTS_DIR'] = os.environ.get(
    'CERT_FONTS_DIR', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'assets', 'fonts')
)
app.config['GOOGLE_API_KEY'] = os.environ.get('GOOGLE_API_KEY', '')
app.config['GEMINI_MODEL'] = os.environ.get('GEMINI_MODEL', 'gemini-2.5-flash')
app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')

logging.basicConfig(
    level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)
logger = logging.getLogger(__name__)


class CertificateWorkspace:
    """In-memory editor state shared by the blueprints."""

    def __init__(self, config):
        self.template = Template()
        self.recipients = RecipientStore()
        self.generator = CertificateGenerator(
            fonts_dir=config.get('CERT_FONTS_DIR'),
            scale=config.get('CERT_CAPTURE_SCALE', 1.5),
        )
        self.controller = BatchExportController(
            self.generator,
            settle_delay=float(config.get('CERT_SETTLE_DELAY_MS', 250)) / 1000.0,
            quality=config.get('CERT_JPEG_QUALITY', 85),
        )
        self.published = None
        self.export_lock = threading.Lock()
        self.bulk_thread = None
        self.bulk_token = None
        self.bulk_result = None

    def snapshot(self) -> ProjectSnapshot:
        return ProjectSnapshot(
            template=self.template.snapshot(),
            recipients=tuple(copy.deepcopy(r) for r in self.recipients),
            saved_at=time.time(),
        )

    def publish(self) -> ProjectSnapshot:
        self.published = self.snapshot()
        logger.info('Published project with %d recipients', len(self.published.recipients))
        return self.published

    @property
    def exporting(self):
        return self.controller.is_running or bool(self.bulk_thread and self.bulk_thread.is_alive())


def init_certificate_state(flask_app):
    flask_app.extensions['certificates'] = CertificateWorkspace(flask_app.config)
    return flask_app.extensions['certificates']


def mask_email(email):
    """Mask email for display"""
    if not email or '@' not in email:
        return email
    local, domain = email.split('@', 1)
    if len(local) <= 2:
        return email
    return local[0] + "*" * (len(local) - 2) + local[-1] + "@" + domain


# Import routes
from certificate_routes import certificate_bp  # noqa: E402
from participant_routes import participant_bp  # noqa: E402

# Register blueprints
app.register_blueprint(certificate_bp)
app.register_blueprint(participant_bp)

init_certificate_state(app)

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5001)
