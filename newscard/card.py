"""
Card rendering for newscard using Pillow.

Each candidate gets a landscape PNG card with its comment set large in
the middle. Two modes:
    - Overlay: the comment is stroked and shadowed over the publisher's
      photo, behind a darkening scrim
    - Synthetic: the comment, article title, publisher and footer are
      drawn over a generated gradient when no usable photo exists

Comment text is fitted by shrinking: wrap at the largest font size, and
step the size down until the lines fit both the line budget and the
available width. The minimum size always ends the loop; text that still
overflows there is rendered anyway.
"""

import io
import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from PIL import Image, ImageDraw, ImageFont, ImageOps
from rich.console import Console

from newscard.errors import ImageDecodeError
from newscard.text import normalize_whitespace, clip_text, safe_file_name

console = Console()

CAPTION_MAX_CHARS = 420
TITLE_MAX_CHARS = 120
LINE_HEIGHT_FACTOR = 1.15

FONT_CANDIDATES = [
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Bold.ttc",
    "/System/Library/Fonts/ヒラギノ角ゴシック W6.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
]

_TOKEN_PATTERN = re.compile(r"\s+|[^\s]")


@dataclass
class OverlayConfig:
    darken: float = 0.45
    padding: int = 64
    max_lines: int = 3
    max_font_size: int = 96
    min_font_size: int = 36
    font_step: int = 4
    glyph_width: float = 0.55
    stroke: bool = True
    drop_shadow: bool = True
    font_path: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> "OverlayConfig":
        data = data or {}
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class TextFit:
    """Result of the shrink-to-fit loop."""
    font_size: int
    lines: list[str]
    line_height: int
    iterations: int
    fits: bool


@dataclass
class RenderedCard:
    data: bytes
    file_name: str
    caption: str


# ---------------------------------------------------------------------------
# Text fitting
# ---------------------------------------------------------------------------


def _glyph_em(ch: str, glyph_width: float) -> float:
    """Approximate advance of one character, in ems."""
    if unicodedata.east_asian_width(ch) in ("W", "F"):
        return 1.0
    if ch.isspace():
        return glyph_width * 0.6
    return glyph_width


def estimate_width(text: str, font_size: int, glyph_width: float = 0.55) -> float:
    return sum(_glyph_em(ch, glyph_width) for ch in text) * font_size


def _tokenize(text: str) -> list[str]:
    """Split into whitespace runs, single wide characters and words."""
    tokens: list[str] = []
    word = ""
    for ch in _TOKEN_PATTERN.findall(text):
        if ch.isspace() or unicodedata.east_asian_width(ch) in ("W", "F"):
            if word:
                tokens.append(word)
                word = ""
            tokens.append(ch)
        else:
            word += ch
    if word:
        tokens.append(word)
    return tokens


def wrap_text(text: str, font_size: int, available_width: float, glyph_width: float = 0.55) -> list[str]:
    """Greedy wrap using the average-glyph-width estimate.

    Words longer than a full line are broken by character.
    """
    text = normalize_whitespace(text)
    if not text:
        return [""]

    def width(s: str) -> float:
        return estimate_width(s, font_size, glyph_width)

    lines: list[str] = []
    current = ""
    for token in _tokenize(text):
        if token.isspace():
            if current:
                current += " "
            continue
        if width(current + token) <= available_width:
            current += token
            continue
        if current.strip():
            lines.append(current.rstrip())
        current = ""
        if width(token) <= available_width:
            current = token
            continue
        # Hard-break an over-long word
        for ch in token:
            if current and width(current + ch) > available_width:
                lines.append(current)
                current = ""
            current += ch

    if current.strip():
        lines.append(current.rstrip())
    return lines or [""]


def fit_text(
    text: str,
    available_width: float,
    overlay: OverlayConfig,
    measure: Callable[[str, int], float] | None = None,
) -> TextFit:
    """Find the largest font size whose wrapped lines fit.

    ``measure(line, size)`` returns the rendered width of a line. It
    defaults to the glyph-width estimate; the renderer passes the real
    font metrics. The loop runs at most
    ``ceil((max_font_size - min_font_size) / font_step) + 1`` times.
    """
    if measure is None:
        def measure(line: str, size: int) -> float:
            return estimate_width(line, size, overlay.glyph_width)

    min_size = max(1, min(overlay.min_font_size, overlay.max_font_size))
    step = max(1, overlay.font_step)
    max_lines = max(1, overlay.max_lines)

    size = max(min_size, overlay.max_font_size)
    iterations = 0
    while True:
        iterations += 1
        lines = wrap_text(text, size, available_width, overlay.glyph_width)
        fits = len(lines) <= max_lines and all(
            measure(line, size) <= available_width for line in lines
        )
        if fits or size <= min_size:
            return TextFit(
                font_size=size,
                lines=lines,
                line_height=round(size * LINE_HEIGHT_FACTOR),
                iterations=iterations,
                fits=fits,
            )
        size = max(min_size, size - step)


def block_top(canvas_height: int, fit: TextFit) -> int:
    """Y of the first line when the wrapped block is centred vertically."""
    return (canvas_height - fit.line_height * len(fit.lines)) // 2


# ---------------------------------------------------------------------------
# Drawing helpers
# ---------------------------------------------------------------------------


def _hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    hex_color = hex_color.lstrip("#")
    return tuple(int(hex_color[i : i + 2], 16) for i in (0, 2, 4))


def _blend_color(
    base: tuple[int, int, int],
    target: tuple[int, int, int],
    strength: float,
) -> tuple[int, int, int]:
    return tuple(int(base[i] + (target[i] - base[i]) * strength) for i in range(3))


class _FontBook:
    """Loads the configured font once per size."""

    def __init__(self, font_path: str = ""):
        self.font_path = font_path
        self._cache: dict[int, ImageFont.ImageFont] = {}

    def _resolve(self) -> str | None:
        paths = [self.font_path] if self.font_path else []
        paths += FONT_CANDIDATES
        for path in paths:
            if path and Path(path).exists():
                return path
        return None

    def get(self, size: int):
        if size not in self._cache:
            path = self._resolve()
            font = None
            if path:
                try:
                    font = ImageFont.truetype(path, size)
                except OSError:
                    font = None
            self._cache[size] = font or ImageFont.load_default(size=size)
        return self._cache[size]

    def measure(self, line: str, size: int) -> float:
        return self.get(size).getlength(line)


def _gradient(width: int, height: int, top: str = "#0f172a", bottom: str = "#020617") -> Image.Image:
    img = Image.new("RGB", (width, height))
    draw = ImageDraw.Draw(img)
    top_rgb, bottom_rgb = _hex_to_rgb(top), _hex_to_rgb(bottom)
    for y in range(height):
        draw.line([(0, y), (width, y)], fill=_blend_color(top_rgb, bottom_rgb, y / max(1, height - 1)))
    return img


def _load_background(data: bytes, width: int, height: int) -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            return ImageOps.fit(src.convert("RGB"), (width, height), Image.LANCZOS)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"Background image could not be decoded: {e}") from e


def _draw_comment(
    img: Image.Image,
    fit: TextFit,
    fonts: _FontBook,
    overlay: OverlayConfig,
) -> Image.Image:
    """Draw the fitted comment centred on the canvas with shadow and stroke."""
    width, height = img.size
    font = fonts.get(fit.font_size)
    layer = Image.new("RGBA", img.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    stroke_width = max(2, fit.font_size // 16) if overlay.stroke else 0
    shadow_offset = max(2, fit.font_size // 20)

    y = block_top(height, fit)
    for line in fit.lines:
        x = (width - fonts.measure(line, fit.font_size)) / 2
        if overlay.drop_shadow:
            draw.text(
                (x + shadow_offset, y + shadow_offset), line,
                font=font, fill=(0, 0, 0, 150),
            )
        draw.text(
            (x, y), line, font=font, fill=(248, 250, 252, 255),
            stroke_width=stroke_width, stroke_fill=(0, 0, 0, 255),
        )
        y += fit.line_height

    return Image.alpha_composite(img.convert("RGBA"), layer)


def _to_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.convert("RGB").save(buf, "PNG", optimize=True)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def card_file_name(index: int, publisher: str) -> str:
    return f"candidate-{index:02d}-{safe_file_name(publisher)}.png"


def card_caption(publisher: str, title: str) -> str:
    return f"{publisher} {title}"[:CAPTION_MAX_CHARS]


def render_card(
    comment: str,
    title: str,
    publisher: str,
    index: int,
    image_config: dict,
    background: bytes | None = None,
) -> RenderedCard:
    """Render one candidate card.

    Args:
        comment: Generated comment, drawn large and fitted.
        title: Article title (synthetic mode and caption).
        publisher: Feed/publisher label.
        index: Candidate number, used in the file name.
        image_config: The ``image`` section of config.yaml.
        background: Publisher photo bytes. Used only when the configured
            mode is ``publisher_overlay``.

    Returns:
        RenderedCard with PNG bytes, file name and accessibility caption.

    Raises:
        ImageDecodeError: If ``background`` is used but cannot be decoded.
    """
    width = int(image_config.get("width", 1200))
    height = int(image_config.get("height", 675))
    overlay = OverlayConfig.from_dict(image_config.get("overlay"))
    fonts = _FontBook(overlay.font_path)
    available_width = width - overlay.padding * 2
    use_overlay = image_config.get("mode") == "publisher_overlay" and background is not None

    fit = fit_text(comment, available_width, overlay, measure=fonts.measure)
    if not fit.fits:
        console.print(
            f"[yellow]Card {index}: comment overflows at minimum size "
            f"{fit.font_size}px ({len(fit.lines)} lines)[/yellow]"
        )

    if use_overlay:
        img = _load_background(background, width, height).convert("RGBA")
        scrim = Image.new("RGBA", img.size, (0, 0, 0, int(255 * max(0.0, min(1.0, overlay.darken)))))
        img = Image.alpha_composite(img, scrim)
        img = _draw_comment(img, fit, fonts, overlay)
        draw = ImageDraw.Draw(img)
        label_font = fonts.get(28)
        draw.text(
            (overlay.padding, height - overlay.padding), publisher,
            font=label_font, fill=(226, 232, 240, 255),
            stroke_width=2, stroke_fill=(0, 0, 0, 255),
        )
    else:
        img = _synthetic_card(width, height, comment_fit=fit, title=title, publisher=publisher,
                              image_config=image_config, fonts=fonts, overlay=overlay)

    return RenderedCard(
        data=_to_png(img),
        file_name=card_file_name(index, publisher),
        caption=card_caption(publisher, title),
    )


def _synthetic_card(
    width: int,
    height: int,
    comment_fit: TextFit,
    title: str,
    publisher: str,
    image_config: dict,
    fonts: _FontBook,
    overlay: OverlayConfig,
) -> Image.Image:
    padding = overlay.padding
    img = _gradient(width, height).convert("RGBA")
    draw = ImageDraw.Draw(img)

    draw.text((padding, padding * 0.5), image_config.get("header", "LATEST NEWS"),
              font=fonts.get(32), fill=(96, 165, 250, 255))
    draw.text((padding, padding * 0.5 + 44), publisher, font=fonts.get(26), fill=(226, 232, 240, 255))

    img = _draw_comment(img, comment_fit, fonts, overlay)
    draw = ImageDraw.Draw(img)

    footer_height = 64
    title_size = 24
    title_lines = wrap_text(
        clip_text(normalize_whitespace(title), TITLE_MAX_CHARS), title_size, width - padding * 2,
        overlay.glyph_width,
    )[:2]
    title_y = height - footer_height - len(title_lines) * round(title_size * LINE_HEIGHT_FACTOR) - 12
    for line in title_lines:
        draw.text((padding, title_y), line, font=fonts.get(title_size), fill=(203, 213, 225, 255))
        title_y += round(title_size * LINE_HEIGHT_FACTOR)

    footer = Image.new("RGBA", (width, footer_height), (0, 0, 0, 140))
    img.alpha_composite(footer, (0, height - footer_height))
    draw = ImageDraw.Draw(img)
    draw.text((padding, height - footer_height + 18), image_config.get("footer", ""),
              font=fonts.get(26), fill=(248, 250, 252, 255))
    return img
