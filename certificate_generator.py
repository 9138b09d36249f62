import asyncio
import base64
import binascii
import io
import logging
import os

from PIL import Image, ImageColor, ImageDraw, ImageFont, UnidentifiedImageError

from certificate_layout import ImageElement, RuleElement, TextElement

logger = logging.getLogger(__name__)


class CaptureError(RuntimeError):
    pass


# Candidate font files per preset, looked up in the fonts dir and then the
# system font path. (regular, bold, italic)
FONT_CANDIDATES = {
    'font-playfair': (['PlayfairDisplay-Regular.ttf'], ['PlayfairDisplay-Bold.ttf'], ['PlayfairDisplay-Italic.ttf']),
    'font-cinzel': (['Cinzel-Regular.ttf'], ['Cinzel-Bold.ttf'], []),
    'font-inter': (['Inter-Regular.ttf'], ['Inter-Bold.ttf'], ['Inter-Italic.ttf']),
    'font-roboto': (['RobotoSlab-Regular.ttf'], ['RobotoSlab-Bold.ttf'], []),
    'font-montserrat': (['Montserrat-Regular.ttf'], ['Montserrat-Bold.ttf'], ['Montserrat-Italic.ttf']),
    'font-greatvibes': (['GreatVibes-Regular.ttf'], [], []),
}

FALLBACK_FONTS = (
    ['DejaVuSerif.ttf', 'LiberationSerif-Regular.ttf'],
    ['DejaVuSerif-Bold.ttf', 'LiberationSerif-Bold.ttf'],
    ['DejaVuSerif-Italic.ttf', 'LiberationSerif-Italic.ttf'],
)


def load_image_source(src):
    """Decode an overlay source: a data URL, raw base64, or a file path."""
    if not src:
        return None
    src = str(src)
    if src.startswith('data:image'):
        _, encoded = src.split(',', 1)
        raw = base64.b64decode(encoded)
    elif os.path.isfile(src):
        with open(src, 'rb') as f:
            raw = f.read()
    else:
        raw = base64.b64decode(src, validate=True)
    img = Image.open(io.BytesIO(raw))
    img.load()
    return img.convert('RGBA')


class CertificateGenerator:
    """Rasterises a ``RenderedLayout`` into a Pillow image."""

    def __init__(self, fonts_dir=None, scale=1.5):
        self.scale = float(scale or 1.0)
        self.fonts_dir = fonts_dir or os.path.join(os.path.dirname(os.path.abspath(__file__)), 'assets', 'fonts')
        self._font_cache = {}
        self._image_cache = {}
        self.register_fonts()

    def register_fonts(self):
        self.font_files = {}
        for family, variants in FONT_CANDIDATES.items():
            resolved = []
            for idx, names in enumerate(variants):
                resolved.append(self._find_font_file(list(names) + FALLBACK_FONTS[idx]))
            self.font_files[family] = resolved

    def _find_font_file(self, filenames):
        for fn in filenames:
            fp = os.path.join(self.fonts_dir, fn)
            if os.path.exists(fp):
                return fp
        for fn in filenames:
            try:
                ImageFont.truetype(fn, 12)
                return fn
            except OSError:
                continue
        return None

    def resolve_font(self, family, size, bold=False, italic=False):
        size = max(1, int(round(size * self.scale)))
        key = (family, size, bold, italic)
        if key in self._font_cache:
            return self._font_cache[key]

        files = self.font_files.get(family) or self.font_files['font-playfair']
        if bold and files[1]:
            path = files[1]
        elif italic and files[2]:
            path = files[2]
        else:
            path = files[0]

        font = None
        if path:
            try:
                font = ImageFont.truetype(path, size)
            except OSError:
                font = None
        if font is None:
            font = ImageFont.load_default(size=size)
        self._font_cache[key] = font
        return font

    def px(self, v):
        return float(v) * self.scale

    def _rgba(self, color, opacity=1.0, fallback='#000000'):
        try:
            r, g, b = ImageColor.getrgb(str(color or fallback))[:3]
        except ValueError:
            r, g, b = ImageColor.getrgb(fallback)[:3]
        return (r, g, b, int(round(255 * max(0.0, min(1.0, float(opacity))))))

    # Drawing

    def draw_background(self, img, draw, theme):
        w, h = img.size
        top, right, bottom, left = (self.px(v) for v in theme.border_widths)
        if theme.border_color and any((top, right, bottom, left)):
            fill = self._rgba(theme.border_color)
            if top:
                draw.rectangle([0, 0, w, top], fill=fill)
            if bottom:
                draw.rectangle([0, h - bottom, w, h], fill=fill)
            if left:
                draw.rectangle([0, 0, left, h], fill=fill)
            if right:
                draw.rectangle([w - right, 0, w, h], fill=fill)
            if theme.double_border and top >= 6:
                gap = top / 3.0
                draw.rectangle([gap, gap, w - gap, h - gap], outline=self._rgba(theme.background), width=max(1, int(gap)))
        if theme.outline_color:
            inset = self.px(12)
            draw.rectangle([inset, inset, w - inset, h - inset], outline=self._rgba(theme.outline_color), width=max(1, int(self.px(3))))

    def _split_wrap_tokens(self, text):
        text = (text or '').strip()
        if not text:
            return []
        return [t for t in text.split(' ') if t]

    def wrap_lines(self, draw, text, font, max_width):
        lines = []
        for paragraph in str(text).split('\n'):
            current = ''
            for token in self._split_wrap_tokens(paragraph):
                candidate = token if not current else f'{current} {token}'
                if draw.textlength(candidate, font=font) <= max_width:
                    current = candidate
                else:
                    if current:
                        lines.append(current)
                    current = token
            lines.append(current)
        return lines

    def draw_text(self, draw, element):
        text = element.text or ''
        if element.uppercase:
            text = text.upper()
        if not text:
            return
        font = self.resolve_font(element.font_family, element.font_size, bold=element.bold, italic=element.italic)
        fill = self._rgba(element.color, element.opacity)

        if element.max_width:
            lines = self.wrap_lines(draw, text, font, self.px(element.max_width))
        else:
            lines = text.split('\n')

        line_h = self.px(element.font_size * element.line_height)
        y = self.px(element.y)
        x = self.px(element.x)
        for line in lines:
            width = draw.textlength(line, font=font)
            if element.align == 'left':
                lx = x
            elif element.align == 'right':
                lx = x - width
            else:
                lx = x - width / 2.0
            draw.text((lx, y), line, font=font, fill=fill)
            y += line_h

    def draw_image(self, img, element):
        try:
            src_img = self._image_cache.get(element.src)
            if src_img is None:
                src_img = load_image_source(element.src)
                self._image_cache[element.src] = src_img
        except (OSError, ValueError, binascii.Error, UnidentifiedImageError) as e:
            logger.warning('Skipping %s image %s: %s', element.role, element.source_id, type(e).__name__)
            return
        if src_img is None:
            return

        # object-contain inside the element box
        box_w, box_h = self.px(element.width), self.px(element.height)
        iw, ih = src_img.size
        s = min(box_w / iw, box_h / ih)
        draw_w, draw_h = max(1, int(iw * s)), max(1, int(ih * s))
        resized = src_img.resize((draw_w, draw_h), Image.Resampling.LANCZOS)
        x = int(self.px(element.x) + (box_w - draw_w) / 2.0)
        y = int(self.px(element.y) + (box_h - draw_h) / 2.0)
        img.paste(resized, (x, y), resized)

    def rasterize(self, layout) -> Image.Image:
        try:
            size = (int(round(self.px(layout.width))), int(round(self.px(layout.height))))
            img = Image.new('RGB', size, self._rgba(layout.theme.background)[:3])
            draw = ImageDraw.Draw(img, 'RGBA')
            self.draw_background(img, draw, layout.theme)

            for element in layout.elements:
                if isinstance(element, TextElement):
                    self.draw_text(draw, element)
                elif isinstance(element, RuleElement):
                    draw.line(
                        [(self.px(element.x0), self.px(element.y0)), (self.px(element.x1), self.px(element.y1))],
                        fill=self._rgba(element.color),
                        width=max(1, int(self.px(element.width))),
                    )
                elif isinstance(element, ImageElement):
                    self.draw_image(img, element)
            return img
        except (OSError, ValueError, MemoryError) as e:
            raise CaptureError(f'Could not rasterise certificate: {e}') from e

    async def capture(self, layout) -> Image.Image:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.rasterize, layout)

    def render_png(self, layout) -> bytes:
        buffer = io.BytesIO()
        self.rasterize(layout).save(buffer, format='PNG')
        return buffer.getvalue()
