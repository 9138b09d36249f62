"""Resolve a template for one recipient into a paint-ready layout.

Everything here is pure: the same design, content, overlays and recipient
always give an equal ``RenderedLayout``. Rasterising the layout is done by
``certificate_generator``.
"""
from dataclasses import dataclass
from typing import Optional

from models import SCRIPT_FONT, SignerBlock, ThemePreset, resolve_font, resolve_theme
from placeholders import substitute

PAGE_WIDTH = 1000
PAGE_HEIGHT = 707
PADDING = 64

TITLE_BASE_SIZE = 60
SUBTITLE_SIZE = 24
NAME_SIZE = 48
SCRIPT_NAME_SIZE = 72
BODY_SIZE = 20
BODY_MAX_WIDTH = 768
BODY_LINE_HEIGHT = 1.625
DATE_SIZE = 18
CAPTION_SIZE = 14
SIGNER_BLOCK_WIDTH = 200

METALLIC_GOLD = '#bf953f'
RULE_COLOR = '#d1d5db'


@dataclass(frozen=True)
class TextElement:
    role: str
    text: str
    x: float
    y: float
    font_size: float
    color: str
    font_family: str
    align: str = 'center'
    max_width: Optional[float] = None
    line_height: float = 1.25
    bold: bool = False
    italic: bool = False
    uppercase: bool = False
    opacity: float = 1.0


@dataclass(frozen=True)
class ImageElement:
    role: str
    src: str
    x: float
    y: float
    width: float
    height: float
    source_id: Optional[str] = None


@dataclass(frozen=True)
class RuleElement:
    x0: float
    y0: float
    x1: float
    y1: float
    color: str = RULE_COLOR
    width: float = 1


@dataclass(frozen=True)
class RenderedLayout:
    width: int
    height: int
    theme: ThemePreset
    font_family: str
    body_color: str
    elements: tuple

    @property
    def is_dark(self):
        return self.theme.is_dark

    def texts(self, role=None):
        return [e for e in self.elements if isinstance(e, TextElement) and (role is None or e.role == role)]

    def images(self, role=None):
        return [e for e in self.elements if isinstance(e, ImageElement) and (role is None or e.role == role)]

    def text_for(self, role):
        found = self.texts(role)
        return found[0].text if found else None


def title_font_size(design):
    return TITLE_BASE_SIZE * float(design.font_size_scale)


def name_font_size(font_family):
    return SCRIPT_NAME_SIZE if font_family == SCRIPT_FONT else NAME_SIZE


def _signer_elements(block, font_family, color):
    elements = []
    cx = block.x + SIGNER_BLOCK_WIDTH / 2.0
    y = block.y
    if block.signature_src:
        w = block.signature_width or 150
        h = block.signature_height or 75
        elements.append(ImageElement('signature', block.signature_src, cx - w / 2.0, y, w, h, source_id=block.id))
        y += h + 8
    elements.append(RuleElement(block.x, y, block.x + SIGNER_BLOCK_WIDTH, y, color='#9ca3af'))
    y += 8
    elements.append(TextElement('signer_name', block.name, cx, y, DATE_SIZE, color, font_family, bold=True))
    y += DATE_SIZE * 1.4
    elements.append(TextElement(
        'signer_title', block.title, cx, y, CAPTION_SIZE, color, font_family, uppercase=True, opacity=0.7,
    ))
    return elements


def render(design, content, overlays, recipient=None) -> RenderedLayout:
    theme = resolve_theme(design.theme)
    font = resolve_font(design.font_family)
    cx = PAGE_WIDTH / 2.0
    body_color = design.body_color
    elements = []

    # Static flow, top to bottom
    y = PADDING + 32
    t_size = title_font_size(design)
    title_color = METALLIC_GOLD if design.is_metallic_title else design.title_color
    elements.append(TextElement('title', content.title, cx, y, t_size, title_color, font, bold=True))
    y += t_size * 1.25 + 16 + 24

    elements.append(TextElement(
        'subtitle', content.subtitle, cx, y, SUBTITLE_SIZE, body_color, font, italic=True, opacity=0.8,
    ))
    y += SUBTITLE_SIZE * 1.25 + 24 + 32

    n_size = name_font_size(font)
    elements.append(TextElement(
        'name', substitute('{{name}}', recipient), cx, y, n_size, design.accent_color, font, bold=True,
    ))
    y += n_size * 1.25 + 32
    elements.append(RuleElement(PADDING, y, PAGE_WIDTH - PADDING, y))
    y += 24 + 24

    elements.append(TextElement(
        'body', substitute(content.body_template, recipient), cx, y, BODY_SIZE, body_color, font,
        max_width=BODY_MAX_WIDTH, line_height=BODY_LINE_HEIGHT,
    ))

    # Date block, bottom left
    date_cx = PADDING + SIGNER_BLOCK_WIDTH / 2.0
    date_top = PAGE_HEIGHT - PADDING - 56
    elements.append(RuleElement(PADDING, date_top, PADDING + SIGNER_BLOCK_WIDTH, date_top, color='#9ca3af'))
    elements.append(TextElement('date', content.date, date_cx, date_top + 8, DATE_SIZE, body_color, font, bold=True))
    elements.append(TextElement(
        'date_caption', 'Date Issued', date_cx, date_top + 8 + DATE_SIZE * 1.4, CAPTION_SIZE, body_color, font,
        uppercase=True, opacity=0.7,
    ))

    blocks = list(content.signer_blocks)
    if not blocks and (content.signer_name or content.signer_title):
        blocks = [SignerBlock(id='default', name=content.signer_name, title=content.signer_title)]
    for block in blocks:
        elements.extend(_signer_elements(block, font, body_color))

    # Overlays paint last so they sit above the text
    for overlay in overlays:
        elements.append(ImageElement(
            overlay.kind, overlay.src, overlay.x, overlay.y, overlay.width, overlay.height, source_id=overlay.id,
        ))

    return RenderedLayout(
        width=PAGE_WIDTH,
        height=PAGE_HEIGHT,
        theme=theme,
        font_family=font,
        body_color=body_color,
        elements=tuple(elements),
    )


def render_template(template, recipient=None) -> RenderedLayout:
    return render(template.design, template.content, template.overlays, recipient)
