"""Illustration style table and image prompt construction."""

from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class StyleKey(str, Enum):
    """Named illustration styles for the feedback card."""

    AUTO = "auto"
    CUTE_ANIMAL = "cute_animal"
    WARM_BOOK = "warm_book"
    NATURE_ORGANIC = "nature_organic"
    FRIEREN_FANTASY = "frieren_fantasy"
    PROFESSIONAL_CALM = "professional_calm"
    STARRY_DREAM = "starry_dream"
    OIL_TEXTURE = "oil_texture"
    MINIMALIST_LINE = "minimalist_line"
    GHIBLI_FRESH = "ghibli_fresh"


IMAGE_STYLES: Mapping[StyleKey, str] = MappingProxyType({
    StyleKey.AUTO: (
        "A unique, artistic illustration. Style: Modern, healing. SCENE: A vast landscape with rolling hills, "
        "a distant mountain range, or an abstract tapestry of weaving light. STICK TO LANDSCAPES OR ABSTRACT ART. "
        "STRICTLY FORBIDDEN: SPROUTS, SEEDLINGS, LEAVES, GREEN PLANTS, ANY GROWTH METAPHORS. ABSOLUTELY NO TEXT."
    ),
    StyleKey.CUTE_ANIMAL: (
        "A cute and warm illustration. SCENE: A busy forest festival with many different animals (rabbits, cats, "
        "dogs, bears) playing musical instruments or sharing a feast. RICH BACKGROUND with many details. "
        "NO PLANTS IN FOCUS. STRICTLY FORBIDDEN: SPROUTS, SEEDLINGS, LEAVES. ABSOLUTELY NO TEXT."
    ),
    StyleKey.WARM_BOOK: (
        "A warm, healing illustration, picture book style. SCENE: A wide-angle view of a cozy village at night "
        "with glowing windows, or a library with floating books and warm candlelight. FOCUS ON ATMOSPHERE. "
        "STRICTLY FORBIDDEN: SPROUTS, SEEDLINGS, LEAVES. ABSOLUTELY NO TEXT."
    ),
    StyleKey.NATURE_ORGANIC: (
        "Style: Soft painterly edges, ink wash. SCENE: A grand waterfall cascading into a misty lake, or a wide "
        "rocky canyon with glowing minerals. FOCUS ON GEOLOGICAL VASTNESS. STRICTLY FORBIDDEN: SPROUTS, "
        "SEEDLINGS, GREEN LEAVES. ABSOLUTELY NO TEXT."
    ),
    StyleKey.FRIEREN_FANTASY: (
        "A beautiful elf female mage, Sousou no Frieren style. SCENE: She is standing on a high stone balcony "
        "overlooking a massive stone castle and a sunset sea. FOCUS ON ARCHITECTURE AND SCALE. STRICTLY "
        "FORBIDDEN: SPROUTS, SEEDLINGS, LEAVES. ABSOLUTELY NO TEXT."
    ),
    StyleKey.PROFESSIONAL_CALM: (
        "Professional, minimalist illustration. Modern editorial style. SCENE: An abstract composition of many "
        "overlapping translucent geometric shapes, or a complex network of delicate golden threads. FOCUS ON "
        "BALANCE. STRICTLY FORBIDDEN: SPROUTS, SEEDLINGS, LEAVES. ABSOLUTELY NO TEXT."
    ),
    StyleKey.STARRY_DREAM: (
        "A dreamlike illustration of a vast galaxy. SCENE: Thousands of stars, swirling nebulae, and distant "
        "planets. A cosmic journey. STRICTLY FORBIDDEN: ANY TERRESTRIAL PLANTS, SPROUTS, SEEDLINGS. "
        "ABSOLUTELY NO TEXT."
    ),
    StyleKey.OIL_TEXTURE: (
        "A rich, textured oil painting. SCENE: A classic landscape of a winding river through a rocky valley, "
        "or a stormy sea with crashing waves. FOCUS ON TEXTURE. STRICTLY FORBIDDEN: SPROUTS, SEEDLINGS, LEAVES. "
        "ABSOLUTELY NO TEXT."
    ),
    StyleKey.MINIMALIST_LINE: (
        "Minimalist line art on textured cream background. SCENE: A complex, continuous line drawing of a "
        "mountain range or a series of interconnected geometric patterns. STRICTLY FORBIDDEN: SPROUTS, "
        "SEEDLINGS, LEAVES. ABSOLUTELY NO TEXT."
    ),
    StyleKey.GHIBLI_FRESH: (
        "Studio Ghibli style. SCENE: A vast, lush valley with a train track running through it, or a "
        "high-altitude view of a seaside town with many houses, ships, and a bustling harbor. RICH IN "
        "ARCHITECTURAL DETAIL. STRICTLY FORBIDDEN: SPROUTS, SEEDLINGS, LEAVES. ABSOLUTELY NO TEXT."
    ),
})

STYLE_LABELS: Mapping[StyleKey, str] = MappingProxyType({
    StyleKey.AUTO: "AI 自動生成",
    StyleKey.CUTE_ANIMAL: "可愛動物風",
    StyleKey.WARM_BOOK: "溫暖繪本風",
    StyleKey.NATURE_ORGANIC: "自然有機風",
    StyleKey.FRIEREN_FANTASY: "日本芙莉蓮",
    StyleKey.PROFESSIONAL_CALM: "專業沈穩風",
    StyleKey.STARRY_DREAM: "星空夢幻風",
    StyleKey.OIL_TEXTURE: "油畫質感風",
    StyleKey.MINIMALIST_LINE: "簡約線條風",
    StyleKey.GHIBLI_FRESH: "吉卜力清新風",
})

NO_TEXT_CONSTRAINT = "ABSOLUTELY NO TEXT, NO LETTERS, NO CHARACTERS, NO WORDS IN THE IMAGE."
PORTRAIT_DIRECTIVE = "aspect ratio 9:16."
DEFAULT_THEME = "warmth"


def parse_style(key: str | StyleKey) -> StyleKey:
    """Validate a style key.

    Raises:
        ValueError: If the key is not one of the known styles
    """
    try:
        return StyleKey(key)
    except ValueError:
        valid = ", ".join(s.value for s in StyleKey)
        raise ValueError(f"Unknown image style: {key!r}. Available: {valid}") from None


def build_visual_prompt(style: str | StyleKey, theme: Optional[str]) -> str:
    """Build the editable image prompt shown for the visual stage.

    The auto style gets a portrait aspect-ratio directive and asks for a
    visual metaphor; named styles only attach the theme.
    """
    style = parse_style(style)
    theme = theme or DEFAULT_THEME
    template = IMAGE_STYLES[style]

    if style == StyleKey.AUTO:
        return f"{PORTRAIT_DIRECTIVE} {template} The theme is: {theme}. Create a visual metaphor for this theme."
    return f"{template} Theme: {theme}."


def build_generation_prompt(
    theme: Optional[str],
    style: str | StyleKey = StyleKey.WARM_BOOK,
    raw_prompt: Optional[str] = None,
) -> str:
    """Build the prompt actually sent to the image model.

    A raw prompt is used verbatim; otherwise the style template and theme
    are combined. The no-text constraint is always appended.
    """
    if raw_prompt:
        return f"{raw_prompt}. {NO_TEXT_CONSTRAINT}"

    style = parse_style(style)
    template = IMAGE_STYLES[style]
    if style == StyleKey.AUTO:
        return (
            f"{template} The theme is: {theme}. Create a visual metaphor for this theme. "
            f"{NO_TEXT_CONSTRAINT}"
        )
    return f"{template} Theme: {theme}. {NO_TEXT_CONSTRAINT}"
