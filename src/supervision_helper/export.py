"""Export of finished artifacts: Word record, card image and feedback JSON."""

import base64
import binascii
import logging
from io import BytesIO
from pathlib import Path
from typing import Optional

from docx import Document
from docx.document import Document as DocxDocument
from PIL import Image, ImageDraw, ImageFont, ImageOps

from .config import CardFontsConfig
from .models.schemas import FeedbackResult, FontStyle, TextColor, TextPosition

logger = logging.getLogger(__name__)

CARD_SIZE = (1080, 1920)
IMAGE_SHARE = 0.65
PANEL_PADDING = 72

CREAM = (253, 251, 247)
INK = (58, 58, 58)
DEEP_PANEL = (62, 66, 60)
LIGHT_INK = (250, 248, 242)


def markdown_to_document(markdown: str) -> DocxDocument:
    """Convert a markdown record into a Word document, line by line.

    ``#``/``##``/``###`` become headings 1-3, ``-``/``*`` items become
    bullets, other text becomes a paragraph and blank lines stay blank.
    """
    document = Document()

    for line in markdown.split("\n"):
        trimmed = line.strip()
        if trimmed.startswith("# "):
            document.add_heading(trimmed[2:], level=1)
        elif trimmed.startswith("## "):
            document.add_heading(trimmed[3:], level=2)
        elif trimmed.startswith("### "):
            document.add_heading(trimmed[4:], level=3)
        elif trimmed.startswith("- ") or trimmed.startswith("* "):
            document.add_paragraph(trimmed[2:], style="List Bullet")
        elif trimmed:
            document.add_paragraph(trimmed)
        else:
            document.add_paragraph("")

    return document


def export_record(markdown: str, path: Path | str) -> Path:
    """Save the formal record as a .docx file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    markdown_to_document(markdown).save(str(path))
    logger.info(f"Saved record document to {path}")
    return path


def decode_data_uri(data_uri: str) -> tuple[str, bytes]:
    """Split a base64 data URI into its mime type and raw bytes.

    Raises:
        ValueError: If the string is not a base64 data URI
    """
    if not data_uri.startswith("data:") or ";base64," not in data_uri:
        raise ValueError("Not a base64 data URI")
    header, encoded = data_uri.split(",", 1)
    mime_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    try:
        return mime_type, base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload in data URI: {e}") from e


def load_image(data_uri: str) -> Image.Image:
    """Open a data URI image as RGB, flattening transparency onto white."""
    _, data = decode_data_uri(data_uri)
    img = Image.open(BytesIO(data))
    if img.mode == "RGBA":
        rgb = Image.new("RGB", img.size, (255, 255, 255))
        rgb.paste(img, mask=img.split()[3])
        return rgb
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def save_card_image(data_uri: str, path: Path | str) -> Path:
    """Write the generated illustration as a PNG file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    load_image(data_uri).save(str(path), "PNG")
    logger.info(f"Saved card image to {path}")
    return path


def export_feedback(feedback: FeedbackResult, path: Path | str) -> Path:
    """Write the feedback result as JSON using the provider field names."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(feedback.model_dump_json(indent=2, by_alias=True), encoding="utf-8")
    return path


def prompt_sheet(image_prompt: Optional[str], full_text: Optional[str]) -> str:
    """Combined image prompt and card text, for copying elsewhere."""
    return f"【AI 繪圖提示詞】\n{image_prompt or ''}\n\n【卡片文字】\n{full_text or ''}"


def _font_size(text: str) -> int:
    """Shrink the type as the card text gets longer."""
    length = len(text)
    if length > 150:
        return 33
    if length > 100:
        return 39
    if length > 70:
        return 45
    return 51


def _load_font(font_style: FontStyle, size: int, fonts: Optional[CardFontsConfig]):
    path = getattr(fonts, font_style.value, None) if fonts else None
    if path:
        try:
            return ImageFont.truetype(path, size)
        except OSError as e:
            logger.warning(f"Could not load {font_style.value} font from {path}: {e}")
    return ImageFont.load_default(size=size)


def _wrap(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> list[str]:
    """Greedy character wrap; works for CJK text without spaces."""
    lines = []
    for paragraph in text.split("\n"):
        if not paragraph.strip():
            lines.append("")
            continue
        current = ""
        for char in paragraph:
            if current and draw.textlength(current + char, font=font) > max_width:
                lines.append(current.rstrip())
                current = char.lstrip()
            else:
                current += char
        if current:
            lines.append(current)
    return lines


def compose_card(
    data_uri: Optional[str],
    feedback: FeedbackResult,
    fonts: Optional[CardFontsConfig] = None,
    size: tuple[int, int] = CARD_SIZE,
) -> Image.Image:
    """Lay out the final card: illustration on top, card text below.

    The text panel follows the layout hints: light text sits on a deep
    panel, dark text on cream, and the block is placed at the top, centre
    or bottom of the panel.
    """
    width, height = size
    image_height = int(height * IMAGE_SHARE)
    design = feedback.design_config

    text_color = design.text_color if design else TextColor.DARK
    text_position = design.text_position if design else TextPosition.CENTER
    font_style = design.font_style if design else FontStyle.SERIF

    panel_color, ink = (DEEP_PANEL, LIGHT_INK) if text_color == TextColor.LIGHT else (CREAM, INK)
    card = Image.new("RGB", size, panel_color)

    if data_uri:
        illustration = ImageOps.fit(load_image(data_uri), (width, image_height))
        card.paste(illustration, (0, 0))
    else:
        card.paste(Image.new("RGB", (width, image_height), CREAM), (0, 0))

    text = feedback.full_text
    if not text:
        return card

    draw = ImageDraw.Draw(card)
    font_size = _font_size(text)
    font = _load_font(font_style, font_size, fonts)
    line_height = int(font_size * 1.6)

    lines = _wrap(draw, text, font, width - 2 * PANEL_PADDING)
    block_height = line_height * len(lines)
    panel_top = image_height + PANEL_PADDING
    panel_bottom = height - PANEL_PADDING

    if text_position == TextPosition.TOP:
        y = panel_top
    elif text_position == TextPosition.BOTTOM:
        y = max(panel_top, panel_bottom - block_height)
    else:
        y = max(panel_top, panel_top + (panel_bottom - panel_top - block_height) // 2)

    for line in lines:
        line_width = draw.textlength(line, font=font)
        draw.text(((width - line_width) / 2, y), line, font=font, fill=ink)
        y += line_height

    return card
