"""
Utility functions for the pixel-art pipeline: the known-palette collection,
palette persistence and image file helpers.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

from PIL import Image

from color_model import BUILTIN_PALETTES, Palette
from palette_parser import (
    PaletteFormat,
    fetch_lospec_palette,
    load_palette_file,
    palette_from_hex_list,
    parse_palette,
)

__all__ = [
    # Functions
    'load_palettes_from_file',
    'save_palettes_to_file',
    'validate_image_file',
    'list_image_files',
    'ensure_rgba',
    # Classes
    'PaletteManager',
]

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tiff', '.webp', '.heic'}


def load_palettes_from_file(filepath: Union[str, Path] = "palette.json") -> List[Palette]:
    """
    Load saved palettes from JSON file.

    Args:
        filepath: Path to palette JSON file

    Returns:
        List of palettes; entries without usable colors are dropped
    """
    if not os.path.exists(filepath):
        return []

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Error loading palettes from {filepath}: {e}")
        return []

    if not isinstance(data, list):
        logger.warning(f"Ignoring {filepath}: expected a list of palettes")
        return []

    palettes = []
    for entry in data:
        if not isinstance(entry, dict) or not isinstance(entry.get('colors'), list):
            continue
        palette = palette_from_hex_list(str(entry.get('name', 'unnamed')),
                                        [c for c in entry['colors'] if isinstance(c, str)])
        if len(palette):
            palettes.append(palette)
    return palettes


def save_palettes_to_file(palettes: List[Palette], filepath: Union[str, Path] = "palette.json"):
    """
    Save palettes to JSON file.

    Args:
        palettes: Palettes to write
        filepath: Path to save JSON file
    """
    data = [{'name': p.name, 'colors': p.to_hex_list()} for p in palettes]
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=4)


def validate_image_file(filepath: Union[str, Path]) -> bool:
    """
    Check if file is a valid image file.

    Args:
        filepath: Path to image file

    Returns:
        True if valid image file
    """
    ext = os.path.splitext(str(filepath))[1].lower()
    return ext in IMAGE_EXTENSIONS and os.path.isfile(filepath)


def list_image_files(folder: Union[str, Path]) -> List[Path]:
    """Sorted list of image files directly inside ``folder``."""
    return sorted(p for p in Path(folder).iterdir() if validate_image_file(p))


def ensure_rgba(image: Image.Image) -> Image.Image:
    """
    Ensure image is in RGBA mode.

    Args:
        image: PIL Image

    Returns:
        Image in RGBA mode
    """
    if image.mode != 'RGBA':
        return image.convert('RGBA')
    return image


class PaletteManager:
    """
    The collection of known palettes plus the currently active one.

    The collection is an immutable tuple: importing a palette replaces it with
    a longer tuple, so readers holding the old value never see it change.
    Built-in palettes always come first. When ``filepath`` is set, imported
    palettes are persisted there.
    """

    def __init__(self, filepath: Optional[Union[str, Path]] = None,
                 builtins: Tuple[Palette, ...] = BUILTIN_PALETTES):
        self.filepath = filepath
        self.builtin_count = len(builtins)
        self.palettes: Tuple[Palette, ...] = tuple(builtins)
        self.active_index = 0
        if self.filepath:
            self.load()

    @property
    def active(self) -> Palette:
        return self.palettes[self.active_index]

    @property
    def imported(self) -> Tuple[Palette, ...]:
        return self.palettes[self.builtin_count:]

    def load(self):
        """Load saved palettes from file, after the built-ins."""
        saved = load_palettes_from_file(self.filepath)
        self.palettes = self.palettes[:self.builtin_count] + tuple(saved)
        if self.active_index >= len(self.palettes):
            self.active_index = 0

    def add_palette(self, palette: Palette, select: bool = True) -> int:
        """
        Append a palette and optionally make it active.

        A palette matching a known one (same name and saved colors) is not
        added again; the existing entry is selected instead. The file is
        written before the in-memory collection changes, so a failed save
        leaves the manager as it was.

        Returns:
            Index of the palette in the collection
        """
        index = self.find_palette(palette)
        if index is not None:
            if select:
                self.active_index = index
            logger.debug(f"Palette '{palette.name}' already known, reusing index {index}")
            return index

        palettes = self.palettes + (palette,)
        if self.filepath:
            save_palettes_to_file(list(palettes[self.builtin_count:]), self.filepath)
        self.palettes = palettes
        index = len(palettes) - 1
        if select:
            self.active_index = index
        logger.info(f"Added palette '{palette.name}' with {len(palette)} colors")
        return index

    def find_palette(self, palette: Palette) -> Optional[int]:
        """Index of a known palette with the same name and colors, if any."""
        hex_list = palette.to_hex_list()
        for i, known in enumerate(self.palettes):
            if known.name == palette.name and known.to_hex_list() == hex_list:
                return i
        return None

    def import_text(self, text: str, fmt: PaletteFormat, name: str = "imported") -> Palette:
        """Parse palette text and add it. On failure nothing changes."""
        palette = parse_palette(text, fmt, name)
        return self.palettes[self.add_palette(palette)]

    def import_file(self, path: Union[str, Path]) -> Palette:
        """Import a .json / .hex / .txt palette file. On failure nothing changes."""
        palette = load_palette_file(path)
        return self.palettes[self.add_palette(palette)]

    def import_lospec(self, url_or_slug: str) -> Palette:
        """Download a palette from lospec.com and add it. On failure nothing changes."""
        palette = fetch_lospec_palette(url_or_slug)
        return self.palettes[self.add_palette(palette)]

    def select(self, index: int) -> Palette:
        if not 0 <= index < len(self.palettes):
            raise IndexError(f"No palette at index {index}")
        self.active_index = index
        return self.active

    def select_by_name(self, name: str) -> Palette:
        """Make the first palette called ``name`` active."""
        for i, pal in enumerate(self.palettes):
            if pal.name == name:
                self.active_index = i
                return pal
        raise KeyError(f"Palette not found: {name}")

    def get_palette(self, name: str) -> Optional[Palette]:
        """Get palette by name."""
        for pal in self.palettes:
            if pal.name == name:
                return pal
        return None

    def list_palette_names(self) -> List[str]:
        """Get list of all palette names."""
        return [p.name for p in self.palettes]
