"""
Image rendering utilities for Station Snapshot workers
"""

import io

from PIL import Image, ImageColor, ImageDraw, ImageFont


# Fonts tried in order before falling back to Pillow's bundled font
FONT_CANDIDATES = ('Verdana.ttf', 'DejaVuSans.ttf', 'Arial.ttf')

TEXT_MARGIN = 10


def _load_font(size):
    for name in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _wrap(draw, text, font, max_width):
    """Break text into lines no wider than max_width pixels"""
    lines = []
    for paragraph in text.split('\n'):
        words = paragraph.split()
        if not words:
            lines.append('')
            continue
        line = words[0]
        for word in words[1:]:
            candidate = f"{line} {word}"
            if draw.textlength(candidate, font=font) <= max_width:
                line = candidate
            else:
                lines.append(line)
                line = word
        lines.append(line)
    return lines


def add_text_to_image(image_bytes, texts):
    """
    Draw text overlays onto an image

    Args:
        image_bytes: Source image in any format Pillow can read
        texts: Iterable of (text, (x, y), font_size, color_hex)

    Returns:
        bytes: The result encoded as PNG
    """
    img = Image.open(io.BytesIO(image_bytes)).convert('RGB')
    draw = ImageDraw.Draw(img)
    max_width = max(1, img.width - TEXT_MARGIN)

    for text, (x, y), font_size, color_hex in texts:
        font = _load_font(font_size)
        color = ImageColor.getrgb(color_hex)
        line_height = int(font_size * 1.25)
        for i, line in enumerate(_wrap(draw, text, font, max_width - int(x))):
            draw.text((x, y + i * line_height), line, font=font, fill=color)

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


def render_station_image(photo_bytes, station):
    """Overlay the station label on a photo, returning PNG bytes"""
    return add_text_to_image(
        photo_bytes,
        [(station.label, (50, 50), 24, '#FFFFFF')]
    )
