"""
Palette import: HEX/TXT line lists, JSON palette files and Lospec downloads.

Individual bad lines are skipped; a palette that ends up with no colors at all,
or a container that cannot be read, raises a typed PaletteError.
"""

import json
import logging
import string
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Union

import requests

from color_model import Color, Palette

__all__ = [
    # Errors
    'PaletteError',
    'PaletteParseError',
    'InvalidFormat',
    'NoValidColors',
    'InvalidHexLength',
    'PaletteImportError',
    # Formats
    'PaletteFormat',
    # Functions
    'parse_hex_color',
    'palette_from_hex_list',
    'parse_hex_palette',
    'parse_json_palette',
    'parse_palette',
    'detect_format',
    'load_palette_file',
    'lospec_slug',
    'fetch_lospec_palette',
]

logger = logging.getLogger(__name__)

LOSPEC_API_URL = "https://lospec.com/palette-list/{slug}.json"

_HEX_DIGITS = frozenset(string.hexdigits)
_COMMENT_PREFIXES = ('#', '//')


# -------------------- Errors --------------------

class PaletteError(Exception):
    """Base class for palette import failures."""
    pass


class PaletteParseError(PaletteError):
    """Raised when palette text cannot be turned into colors."""
    pass


class InvalidFormat(PaletteParseError):
    """Structurally malformed input: bad JSON, wrong shapes, non-hex characters."""
    pass


class NoValidColors(PaletteParseError):
    """Well-formed input that yielded zero usable colors."""
    pass


class InvalidHexLength(PaletteParseError):
    """A hex token that is not 3, 6 or 8 digits long."""
    pass


class PaletteImportError(PaletteError):
    """Raised when a remote palette cannot be fetched."""
    pass


class PaletteFormat(Enum):
    JSON = "json"
    HEX = "hex"


# -------------------- Hex colors --------------------

def parse_hex_color(token: str) -> Color:
    """
    Parse a single hex color token.

    Accepts an optional leading '#', then 3 (RGB), 6 (RRGGBB) or 8 (AARRGGBB)
    hex digits. Note the 8-digit form puts alpha first.

    Args:
        token: Hex string like "F0A", "#FF00AA" or "80FF00AA"

    Returns:
        Parsed Color

    Raises:
        InvalidHexLength: Digit count is not 3, 6 or 8
        InvalidFormat: Token contains a non-hex character
    """
    digits = token.strip()
    if digits.startswith('#'):
        digits = digits[1:]

    if len(digits) not in (3, 6, 8):
        raise InvalidHexLength(f"Hex color must have 3, 6 or 8 digits, got {len(digits)}: {token!r}")
    if not all(ch in _HEX_DIGITS for ch in digits):
        raise InvalidFormat(f"Invalid hex color: {token!r}")

    if len(digits) == 3:
        r, g, b = (int(ch, 16) * 17 for ch in digits)
        return Color(r, g, b)

    pairs = [int(digits[i:i+2], 16) for i in range(0, len(digits), 2)]
    if len(pairs) == 3:
        return Color(*pairs)
    a, r, g, b = pairs
    return Color(r, g, b, a)


def _collect_colors(tokens: Iterable[str]) -> List[Color]:
    colors = []
    for token in tokens:
        try:
            colors.append(parse_hex_color(token))
        except PaletteParseError as e:
            logger.debug(f"Skipping palette entry: {e}")
    return colors


def palette_from_hex_list(name: str, hex_list: Iterable[str]) -> Palette:
    """
    Convert a list of hex colors to a palette, skipping entries that do not parse.

    Args:
        name: Palette name
        hex_list: List of hex color strings

    Returns:
        Palette (possibly empty)
    """
    return Palette(name, tuple(_collect_colors(hex_list)))


# -------------------- Palette files --------------------

def parse_hex_palette(text: str, name: str = "imported") -> Palette:
    """
    Parse a HEX/TXT palette: one color per line.

    Blank lines and lines starting with '#' or '//' are comments.

    Raises:
        NoValidColors: No line produced a color
    """
    lines = (line.strip() for line in text.splitlines())
    tokens = [line for line in lines if line and not line.startswith(_COMMENT_PREFIXES)]
    colors = _collect_colors(tokens)
    if not colors:
        raise NoValidColors("No valid HEX colors found in palette")
    return Palette(name, tuple(colors))


def parse_json_palette(text: str, name: str = "imported") -> Palette:
    """
    Parse a JSON palette of the form {"title": "...", "colors": ["...", ...]}.

    The title is optional. Lospec's "name" key is used when there is no title.

    Args:
        text: JSON document
        name: Fallback palette name

    Returns:
        Parsed Palette

    Raises:
        InvalidFormat: Bad JSON or unexpected structure
        NoValidColors: No entry produced a color
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidFormat(f"Invalid JSON palette: line {e.lineno}: {e.msg}") from e

    if not isinstance(data, dict):
        raise InvalidFormat("JSON palette must be an object")

    colors = data.get("colors")
    if not isinstance(colors, list):
        raise InvalidFormat("JSON palette needs a 'colors' array")
    if not all(isinstance(c, str) for c in colors):
        raise InvalidFormat("JSON palette 'colors' must contain only strings")

    title = data.get("title")
    if title is not None and not isinstance(title, str):
        raise InvalidFormat("JSON palette 'title' must be a string")
    if not title:
        lospec_name = data.get("name")
        title = lospec_name if isinstance(lospec_name, str) and lospec_name else name

    parsed = _collect_colors(colors)
    if not parsed:
        raise NoValidColors("No valid colors found in JSON palette")
    return Palette(title, tuple(parsed))


def parse_palette(text: str, fmt: PaletteFormat, name: str = "imported") -> Palette:
    """Parse palette text in the given format."""
    if fmt == PaletteFormat.JSON:
        return parse_json_palette(text, name)
    elif fmt == PaletteFormat.HEX:
        return parse_hex_palette(text, name)
    else:
        raise ValueError(f"Unsupported palette format: {fmt}")


def detect_format(path: Union[str, Path]) -> PaletteFormat:
    """
    Infer the palette format from a file extension.

    Anything that is not .json is read as a HEX line list.
    """
    if Path(path).suffix.lower() == ".json":
        return PaletteFormat.JSON
    return PaletteFormat.HEX


def load_palette_file(path: Union[str, Path], fmt: Optional[PaletteFormat] = None) -> Palette:
    """
    Read and parse a palette file.

    Args:
        path: Path to a .json, .hex or .txt palette
        fmt: Format override; detected from the extension if omitted

    Returns:
        Parsed Palette named after the file stem (or the JSON title)

    Raises:
        InvalidFormat: File is not UTF-8 or is malformed
        NoValidColors: File contains no usable colors
        OSError: File could not be read
    """
    path = Path(path)
    fmt = fmt or detect_format(path)
    data = path.read_bytes()
    try:
        text = data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise InvalidFormat(f"Palette file is not valid UTF-8: {path.name}") from e

    palette = parse_palette(text, fmt, name=path.stem)
    logger.info(f"Parsed {fmt.value.upper()} palette '{palette.name}' with {len(palette)} colors")
    return palette


# -------------------- Lospec --------------------

def lospec_slug(url_or_slug: str) -> str:
    """
    Extract the palette slug from a Lospec URL.

    e.g. https://lospec.com/palette-list/my-palette -> my-palette
    """
    slug = url_or_slug.strip().rstrip('/').split('/')[-1]
    if slug.endswith('.json'):
        slug = slug[:-len('.json')]
    return slug


def fetch_lospec_palette(url_or_slug: str, timeout: float = 10) -> Palette:
    """
    Download a palette from lospec.com.

    Args:
        url_or_slug: Lospec palette URL or bare slug
        timeout: Request timeout in seconds

    Returns:
        Parsed Palette

    Raises:
        PaletteImportError: Request failed
        PaletteParseError: Response was not a usable palette
    """
    slug = lospec_slug(url_or_slug)
    if not slug:
        raise PaletteImportError(f"Cannot determine Lospec palette from {url_or_slug!r}")

    api_url = LOSPEC_API_URL.format(slug=slug)
    logger.debug(f"Fetching Lospec palette from {api_url}")
    try:
        response = requests.get(api_url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise PaletteImportError(f"Failed to fetch Lospec palette '{slug}': {e}") from e

    palette = parse_json_palette(response.text, name=slug)
    logger.info(f"Imported Lospec palette '{palette.name}' with {len(palette)} colors")
    return palette
