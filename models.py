import copy
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Optional


# Preset lists. The first entry of each is the fallback for unknown values.
FONTS = [
    {'name': 'Playfair Display (Serif)', 'value': 'font-playfair'},
    {'name': 'Cinzel (Elegant)', 'value': 'font-cinzel'},
    {'name': 'Inter (Modern)', 'value': 'font-inter'},
    {'name': 'Roboto Slab (Bold)', 'value': 'font-roboto'},
    {'name': 'Montserrat (Clean)', 'value': 'font-montserrat'},
    {'name': 'Great Vibes (Script)', 'value': 'font-greatvibes'},
]

SCRIPT_FONT = 'font-greatvibes'


@dataclass(frozen=True)
class ThemePreset:
    id: str
    name: str
    background: str
    border_color: Optional[str] = None
    # top, right, bottom, left
    border_widths: tuple = (0, 0, 0, 0)
    double_border: bool = False
    outline_color: Optional[str] = None
    is_dark: bool = False


def _all_sides(w):
    return (w, w, w, w)


THEMES = [
    ThemePreset('classic', 'Classic Border', '#ffffff', '#1e293b', _all_sides(20), double_border=True),
    ThemePreset('modern', 'Modern Minimal', '#ffffff', '#2563eb', (0, 0, 8, 0)),
    ThemePreset('dark', 'Elegant Dark', '#0f172a', '#d4af37', _all_sides(2), is_dark=True),
    ThemePreset('parchment', 'Old Parchment', '#fdf6e3', '#d4c5b0', _all_sides(10)),
    ThemePreset('tech', 'Tech Future', '#f8fafc', '#4f46e5', (0, 30, 0, 30)),
    ThemePreset('luxury', 'Luxury Gold', '#fafaf9', '#d4af37', _all_sides(4), outline_color='#e6c875'),
    ThemePreset('nature', 'Organic Green', '#f0fdf4', '#047857', (20, 0, 0, 0)),
    ThemePreset('corporate', 'Corporate Blue', '#ffffff', '#1e3a8a', _all_sides(4)),
    ThemePreset('artdeco', 'Art Deco', '#000000', '#e6c875', _all_sides(1), outline_color='#d4af37', is_dark=True),
    ThemePreset('clean', 'Super Clean', '#ffffff'),
]


def resolve_theme(theme_id) -> ThemePreset:
    for theme in THEMES:
        if theme.id == theme_id:
            return theme
    return THEMES[0]


def resolve_font(font_value) -> str:
    for font in FONTS:
        if font['value'] == font_value:
            return font['value']
    return FONTS[0]['value']


class TemplateValidationError(ValueError):
    pass


class OverlayNotFoundError(LookupError):
    pass


OVERLAY_KINDS = ('logo', 'signature')

_OVERLAY_DEFAULT_POSITIONS = {
    'logo': (50, 50),
    'signature': (650, 550),
}


def new_token(length=9) -> str:
    return uuid.uuid4().hex[:length]


@dataclass
class TemplateDesign:
    theme: str = 'classic'
    font_family: str = 'font-playfair'
    title_color: str = '#1e293b'
    body_color: str = '#334155'
    accent_color: str = '#D4AF37'
    is_metallic_title: bool = False
    font_size_scale: float = 1.0


@dataclass
class SignerBlock:
    id: str
    name: str = ''
    title: str = ''
    x: int = 736
    y: int = 560
    signature_src: Optional[str] = None
    signature_width: int = 150
    signature_height: int = 75


@dataclass
class TemplateContent:
    title: str = 'Certificate of Achievement'
    subtitle: str = 'This is proudly presented to'
    body_template: str = (
        'For outstanding performance and dedication in the Annual Tech Hackathon. '
        'Your contribution has been invaluable to the success of the event.'
    )
    signer_name: str = 'John Doe'
    signer_title: str = 'Director of Operations'
    date: str = field(default_factory=lambda: time.strftime('%m/%d/%Y'))
    signer_blocks: list = field(default_factory=list)


@dataclass
class ImageOverlay:
    id: str
    src: str
    x: int
    y: int
    width: int = 150
    height: int = 100
    kind: str = 'logo'


RECIPIENT_STATUSES = ('pending', 'sent', 'error')
UNKNOWN_PARTICIPANT = 'Unknown Participant'
KNOWN_RECIPIENT_FIELDS = ('id', 'name', 'email', 'status', 'rank', 'role')


@dataclass
class Recipient:
    id: str
    name: str
    email: Optional[str] = None
    status: str = 'pending'
    rank: Optional[str] = None
    role: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def lookup(self, key):
        """Value bound to a placeholder key, or None when the key is undefined."""
        if key in KNOWN_RECIPIENT_FIELDS:
            return getattr(self, key)
        return self.extra.get(key)

    def to_dict(self) -> dict:
        data = {k: getattr(self, k) for k in KNOWN_RECIPIENT_FIELDS}
        data['extra'] = dict(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'Recipient':
        data = data or {}
        if not isinstance(data, dict):
            raise TemplateValidationError('Invalid recipient data: expected an object')
        data = dict(data)
        raw_extra = data.pop('extra', None) or {}
        if not isinstance(raw_extra, dict):
            raise TemplateValidationError('Invalid recipient data: extra must be an object')
        extra = {str(k): str(v) for k, v in raw_extra.items()}
        known = {
            k: None if data[k] is None else str(data[k])
            for k in KNOWN_RECIPIENT_FIELDS if k in data
        }
        if not known.get('id'):
            known['id'] = new_token()
        if not known.get('name'):
            known['name'] = UNKNOWN_PARTICIPANT
        if known.get('status') not in RECIPIENT_STATUSES:
            known['status'] = 'pending'
        return cls(extra=extra, **known)


def _check_fields(cls, changes):
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise TemplateValidationError(f'Unknown {cls.__name__} field(s): {", ".join(unknown)}')


def _to_int(value, label):
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        raise TemplateValidationError(f'{label} must be a number')


def _clean_design(changes):
    changes = dict(changes)
    _check_fields(TemplateDesign, changes)
    if 'font_size_scale' in changes:
        try:
            scale = float(changes['font_size_scale'])
        except (TypeError, ValueError):
            raise TemplateValidationError('font_size_scale must be a number')
        if scale <= 0:
            raise TemplateValidationError('font_size_scale must be positive')
        changes['font_size_scale'] = scale
    if 'is_metallic_title' in changes:
        changes['is_metallic_title'] = bool(changes['is_metallic_title'])
    for key in ('theme', 'font_family', 'title_color', 'body_color', 'accent_color'):
        if key in changes:
            changes[key] = '' if changes[key] is None else str(changes[key])
    return changes


def _clean_content(changes):
    changes = dict(changes)
    changes.pop('signer_blocks', None)
    _check_fields(TemplateContent, changes)
    return {k: '' if v is None else str(v) for k, v in changes.items()}


def _signer_block_from_dict(data):
    block = SignerBlock(**data)
    block.id = str(block.id)
    block.name = str(block.name or '')
    block.title = str(block.title or '')
    block.x = _to_int(block.x, 'x')
    block.y = _to_int(block.y, 'y')
    block.signature_width = _to_int(block.signature_width, 'signature_width')
    block.signature_height = _to_int(block.signature_height, 'signature_height')
    block.signature_src = str(block.signature_src) if block.signature_src else None
    return block


def _overlay_from_dict(data):
    overlay = ImageOverlay(**data)
    if overlay.kind not in OVERLAY_KINDS:
        raise TemplateValidationError(f'Unsupported overlay kind: {overlay.kind!r}')
    if not overlay.src or not isinstance(overlay.src, str):
        raise TemplateValidationError('Overlay image is empty')
    overlay.id = str(overlay.id)
    overlay.x = _to_int(overlay.x, 'x')
    overlay.y = _to_int(overlay.y, 'y')
    overlay.width = _to_int(overlay.width, 'width')
    overlay.height = _to_int(overlay.height, 'height')
    if overlay.width <= 0 or overlay.height <= 0:
        raise TemplateValidationError('Overlay size must be positive')
    return overlay


class Template:
    """Design and content shared by every recipient's certificate."""

    def __init__(self, design=None, content=None, overlays=None):
        self.design = design or TemplateDesign()
        self.content = content or TemplateContent()
        self.overlays = list(overlays or [])

    def update_design(self, **changes):
        for key, value in _clean_design(changes).items():
            setattr(self.design, key, value)
        return self.design

    def update_content(self, **changes):
        for key, value in _clean_content(changes).items():
            setattr(self.content, key, value)
        return self.content

    # Overlays

    def add_overlay(self, src, kind='logo', width=150, height=100) -> ImageOverlay:
        if kind not in OVERLAY_KINDS:
            raise TemplateValidationError(f'Unsupported overlay kind: {kind!r}')
        if not src:
            raise TemplateValidationError('Overlay image is empty')
        width = _to_int(width, 'width')
        height = _to_int(height, 'height')
        if width <= 0 or height <= 0:
            raise TemplateValidationError('Overlay size must be positive')
        x, y = _OVERLAY_DEFAULT_POSITIONS[kind]
        overlay = ImageOverlay(id=uuid.uuid4().hex, src=src, x=x, y=y, width=width, height=height, kind=kind)
        self.overlays.append(overlay)
        return overlay

    def _find_overlay(self, overlay_id):
        for overlay in self.overlays:
            if overlay.id == overlay_id:
                return overlay
        raise OverlayNotFoundError(f'Overlay not found: {overlay_id}')

    def move_overlay(self, overlay_id, x, y) -> ImageOverlay:
        overlay = self._find_overlay(overlay_id)
        overlay.x = _to_int(x, 'x')
        overlay.y = _to_int(y, 'y')
        return overlay

    def remove_overlay(self, overlay_id):
        overlay = self._find_overlay(overlay_id)
        self.overlays.remove(overlay)

    # Signer blocks

    def add_signer_block(self, name='', title='', x=736, y=560, signature_src=None) -> SignerBlock:
        block = SignerBlock(
            id=uuid.uuid4().hex,
            name=str(name or ''),
            title=str(title or ''),
            x=_to_int(x, 'x'),
            y=_to_int(y, 'y'),
            signature_src=signature_src or None,
        )
        self.content.signer_blocks.append(block)
        return block

    def _find_signer_block(self, block_id):
        for block in self.content.signer_blocks:
            if block.id == block_id:
                return block
        raise OverlayNotFoundError(f'Signer block not found: {block_id}')

    def move_signer_block(self, block_id, x, y) -> SignerBlock:
        block = self._find_signer_block(block_id)
        block.x = _to_int(x, 'x')
        block.y = _to_int(y, 'y')
        return block

    def remove_signer_block(self, block_id):
        block = self._find_signer_block(block_id)
        self.content.signer_blocks.remove(block)

    def snapshot(self) -> 'Template':
        return Template(
            design=copy.deepcopy(self.design),
            content=copy.deepcopy(self.content),
            overlays=copy.deepcopy(self.overlays),
        )

    def to_dict(self) -> dict:
        return {
            'design': asdict(self.design),
            'content': asdict(self.content),
            'overlays': [asdict(o) for o in self.overlays],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Template':
        data = data or {}
        if not isinstance(data, dict):
            raise TemplateValidationError('Invalid template data: expected an object')
        try:
            design = TemplateDesign(**_clean_design(data.get('design') or {}))
            content_raw = dict(data.get('content') or {})
            blocks = [_signer_block_from_dict(b) for b in content_raw.pop('signer_blocks', None) or []]
            content = TemplateContent(signer_blocks=blocks, **_clean_content(content_raw))
            overlays = [_overlay_from_dict(o) for o in data.get('overlays') or []]
        except TemplateValidationError:
            raise
        except (TypeError, ValueError, AttributeError) as e:
            raise TemplateValidationError(f'Invalid template data: {e}')
        return cls(design=design, content=content, overlays=overlays)


@dataclass(frozen=True)
class ProjectSnapshot:
    """Read-only copy of a template and its recipients, as published to participants."""

    template: Template
    recipients: tuple
    saved_at: float

    def to_dict(self) -> dict:
        data = self.template.to_dict()
        data['recipients'] = [r.to_dict() for r in self.recipients]
        data['saved_at'] = self.saved_at
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'ProjectSnapshot':
        data = data or {}
        if not isinstance(data, dict):
            raise TemplateValidationError('Invalid project data: expected an object')
        raw_recipients = data.get('recipients') or []
        if not isinstance(raw_recipients, list):
            raise TemplateValidationError('Invalid project data: recipients must be a list')
        recipients = tuple(Recipient.from_dict(r) for r in raw_recipients)
        try:
            saved_at = float(data.get('saved_at') or time.time())
        except (TypeError, ValueError):
            saved_at = time.time()
        return cls(template=Template.from_dict(data), recipients=recipients, saved_at=saved_at)
