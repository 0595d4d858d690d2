#!/usr/bin/env python3
"""
CLI module for Pixless - Command-Line Interface

Runs the pixel-art pipeline (downsample, palette quantization with optional
Floyd–Steinberg dithering, hard-edged upscale) over images described by a
JSON job file. Uses Rich for terminal output.
"""

import sys
import logging
import argparse
import json
from pathlib import Path
from typing import Optional, Dict, Any

# Rich imports for terminal output
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.panel import Panel
from PIL import Image

# Local imports
from color_model import Palette
from config_manager import ConfigManager
from palette_parser import PaletteError
from pixel_lib import DitherMode, ImageResampler, PixelPipeline
from utils import PaletteManager, ensure_rgba, list_image_files, validate_image_file


# Initialize Rich console
console = Console()

logger = logging.getLogger('pixless')


def setup_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None):
    """
    Setup logging with Rich handler for terminal output.

    Args:
        verbose: Enable verbose (DEBUG) logging
        quiet: Suppress all but ERROR messages
        log_file: Optional path to log file
    """
    # Determine logging level
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handlers = []

    # Rich handler for console output
    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=True,
        rich_tracebacks=True
    )
    handlers.append(rich_handler)

    # File handler if specified
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        handlers.append(file_handler)

    # Setup root logger
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True
    )

    logger.setLevel(level)
    return logger


# ==================== Config Schema & Validation ====================

VALID_MODES = ["image", "folder"]
VALID_DITHER_MODES = [mode.value for mode in DitherMode]
VALID_RESAMPLE_FILTERS = sorted(ImageResampler.FILTERS)

# Output formats without an alpha channel
OPAQUE_OUTPUT_EXTENSIONS = {'.jpg', '.jpeg'}


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def _check_positive_int(section: Dict[str, Any], key: str, label: str, errors: list):
    if key in section:
        if isinstance(section[key], bool):
            errors.append(f"'{label}' must be an integer")
            return
        try:
            value = int(section[key])
            if value <= 0 or value != section[key]:
                errors.append(f"'{label}' must be a positive integer")
        except (ValueError, TypeError):
            errors.append(f"'{label}' must be an integer")


def validate_config(config: Dict[str, Any], config_path: Path,
                    settings: Optional[ConfigManager] = None) -> Dict[str, Any]:
    """
    Validate a job configuration and return it normalized.

    Args:
        config: Raw config dictionary
        config_path: Path to config file (for resolving relative paths)
        settings: Application settings supplying defaults

    Returns:
        Validated and normalized config

    Raises:
        ConfigValidationError: If validation fails
    """
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a JSON object")

    errors = []

    # Required fields
    for field in ("input", "output"):
        if field not in config:
            errors.append(f"Missing required field: '{field}'")
        elif not isinstance(config[field], str) or not config[field]:
            errors.append(f"'{field}' must be a non-empty path string")

    # Validate mode (optional, can be auto-detected)
    mode = config.get("mode")
    if mode and mode not in VALID_MODES:
        errors.append(f"Invalid mode: '{mode}'. Must be one of: {VALID_MODES}")

    # Validate pixelization section
    if "pixelization" in config:
        pix = config["pixelization"]
        if not isinstance(pix, dict):
            errors.append("'pixelization' must be an object/dictionary")
        else:
            _check_positive_int(pix, "width", "pixelization.width", errors)
            _check_positive_int(pix, "height", "pixelization.height", errors)
            _check_positive_int(pix, "upscale_factor", "pixelization.upscale_factor", errors)
            if "resample" in pix and pix["resample"] not in VALID_RESAMPLE_FILTERS:
                errors.append(f"Invalid resample filter: '{pix['resample']}'. Must be one of: {VALID_RESAMPLE_FILTERS}")

    # Validate dithering section
    if "dithering" in config:
        dith = config["dithering"]
        if not isinstance(dith, dict):
            errors.append("'dithering' must be an object/dictionary")
        else:
            if "mode" in dith and dith["mode"] not in VALID_DITHER_MODES:
                errors.append(f"Invalid dither mode: '{dith['mode']}'. Must be one of: {VALID_DITHER_MODES}")

    # Validate palette section
    if "palette" in config:
        pal = config["palette"]
        if not isinstance(pal, dict):
            errors.append("'palette' must be an object/dictionary")
        elif "source" in pal and (not isinstance(pal["source"], str) or not pal["source"]):
            errors.append("'palette.source' must be a non-empty string")

    # If any errors, raise
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  • {e}" for e in errors)
        raise ConfigValidationError(error_msg)

    # Normalize paths (resolve relative to config file)
    config_dir = config_path.parent

    input_path = Path(config["input"])
    if not input_path.is_absolute():
        input_path = (config_dir / input_path).resolve()
    config["input"] = str(input_path)

    output_path = Path(config["output"])
    if not output_path.is_absolute():
        output_path = (config_dir / output_path).resolve()
    config["output"] = str(output_path)

    if not input_path.exists():
        raise ConfigValidationError(f"Input file/directory not found: {config['input']}")

    # Defaults come from the application settings
    settings = settings or ConfigManager()
    config.setdefault("mode", None)  # Will be auto-detected
    config.setdefault("pixelization", {})
    config.setdefault("dithering", {})
    config.setdefault("palette", {})

    config["pixelization"].setdefault("width", settings.get("pipeline", "working_width", default=128))
    config["pixelization"].setdefault("height", settings.get("pipeline", "working_height", default=128))
    config["pixelization"].setdefault("upscale_factor", settings.get("pipeline", "upscale_factor", default=8))
    config["pixelization"].setdefault("resample", settings.get("pipeline", "resample", default="box"))

    default_dither = settings.get("pipeline", "dither_mode", default="none")
    config["dithering"].setdefault("enabled", default_dither != DitherMode.NONE.value)
    config["dithering"].setdefault(
        "mode",
        default_dither if default_dither != DitherMode.NONE.value else DitherMode.FLOYD_STEINBERG.value
    )

    config["palette"].setdefault("source", settings.get("palettes", "active", default="default"))

    # Palette files are relative to the job file too
    source = config["palette"]["source"]
    if source.startswith("file:"):
        palette_path = Path(source[5:])
        if not palette_path.is_absolute():
            palette_path = (config_dir / palette_path).resolve()
        config["palette"]["source"] = f"file:{palette_path}"

    return config


def load_config(config_path: Path, settings: Optional[ConfigManager] = None) -> Dict[str, Any]:
    """
    Load and validate configuration from JSON file.

    Args:
        config_path: Path to JSON config file
        settings: Application settings supplying defaults

    Returns:
        Validated config dictionary

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"Invalid JSON in config file:\n  Line {e.lineno}: {e.msg}")
    except OSError as e:
        raise ConfigValidationError(f"Failed to load config file: {e}")

    return validate_config(config, config_path, settings)


def detect_mode(input_path: Path) -> str:
    """
    Auto-detect processing mode based on input path.

    Args:
        input_path: Input file or directory path

    Returns:
        Mode string: "image" or "folder"
    """
    if input_path.is_dir():
        return "folder"

    if validate_image_file(input_path):
        return "image"
    raise ConfigValidationError(f"Cannot determine mode for file extension: {input_path.suffix.lower()}")


# ==================== Palette Setup ====================

def setup_palette_from_config(palette_config: Dict[str, Any], palette_mgr: PaletteManager) -> Palette:
    """
    Resolve and activate the palette named in the job configuration.

    Sources:
        "<name>"          built-in or previously imported palette
        "file:<path>"     HEX/TXT/JSON palette file (added to the collection)
        "lospec:<slug>"   palette downloaded from lospec.com

    Returns:
        The active palette

    Raises:
        ConfigValidationError: Palette could not be found or imported
    """
    source = palette_config["source"]

    try:
        if source.startswith("file:"):
            file_path = Path(source[5:])
            if not file_path.exists():
                raise ConfigValidationError(f"Palette file not found: {file_path}")
            logger.info(f"Importing palette from: [cyan]{file_path}[/]")
            palette = palette_mgr.import_file(file_path)

        elif source.startswith("lospec:"):
            slug = source[7:]
            logger.info(f"Downloading Lospec palette: [cyan]{slug}[/]")
            palette = palette_mgr.import_lospec(slug)

        else:
            palette = palette_mgr.select_by_name(source)
    except KeyError:
        raise ConfigValidationError(
            f"Unknown palette: {source}. Known palettes: {', '.join(palette_mgr.list_palette_names())}"
        ) from None
    except (PaletteError, OSError) as e:
        raise ConfigValidationError(f"Failed to import palette '{source}': {e}") from e

    logger.info(f"[green]✓[/] Palette [cyan]{palette.name}[/] ready with {len(palette)} colors")
    return palette


def build_pipeline(config: Dict[str, Any], palette: Palette) -> PixelPipeline:
    pix = config["pixelization"]
    dith = config["dithering"]
    dither_mode = DitherMode(dith["mode"]) if dith["enabled"] else DitherMode.NONE
    return PixelPipeline(
        palette,
        working_size=(pix["width"], pix["height"]),
        upscale_factor=pix["upscale_factor"],
        dither_mode=dither_mode,
        resample=pix["resample"],
    )


# ==================== Image Processing ====================

def process_single_image(input_path: Path, output_path: Path, pipeline: PixelPipeline) -> bool:
    """
    Run the pipeline on one image and save the result.

    Returns:
        True if successful, False otherwise
    """
    try:
        logger.info(f"Loading image: [cyan]{input_path.name}[/]")
        with Image.open(input_path) as img:
            image = ensure_rgba(img.copy())
        logger.info(f"Image size: [cyan]{image.size[0]}x{image.size[1]}[/]")

        result = pipeline.process_image(image)
        if output_path.suffix.lower() in OPAQUE_OUTPUT_EXTENSIONS:
            result = result.convert('RGB')

        output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Saving to: [cyan]{output_path}[/]")
        result.save(output_path)

        size_kb = output_path.stat().st_size / 1024
        logger.info(f"[bold green]✓ Image saved![/] {result.size[0]}x{result.size[1]} ({size_kb:.1f} KB)")
        return True

    except (OSError, ValueError) as e:
        logger.error(f"Failed to process image {input_path.name}: {e}",
                     exc_info=logger.isEnabledFor(logging.DEBUG))
        return False


def process_folder(input_dir: Path, output_dir: Path, pipeline: PixelPipeline) -> bool:
    """
    Run the pipeline on every image in a folder.

    Outputs are written as PNG under ``output_dir`` with the same stem.

    Returns:
        True if every image succeeded
    """
    files = list_image_files(input_dir)
    if not files:
        logger.error(f"No supported images found in: {input_dir}")
        return False

    output_dir.mkdir(parents=True, exist_ok=True)
    failures = 0
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console
    ) as progress:
        task = progress.add_task("Processing images...", total=len(files))
        for path in files:
            progress.update(task, description=f"Processing {path.name}")
            if not process_single_image(path, output_dir / f"{path.stem}.png", pipeline):
                failures += 1
            progress.advance(task)

    if failures:
        logger.error(f"{failures} of {len(files)} images failed")
    return failures == 0


def show_banner():
    """Display application banner."""
    banner = """
[bold cyan]╔═══════════════════════════════════════╗[/]
[bold cyan]║[/]        [bold white]Pixless CLI[/] [dim]- v1.0[/]             [bold cyan]║[/]
[bold cyan]║[/]  Palette Pixel-Art Converter          [bold cyan]║[/]
[bold cyan]╚═══════════════════════════════════════╝[/]
"""
    console.print(banner)


def show_help():
    """Display detailed help information."""
    help_text = """
[bold cyan]Pixless CLI - Usage[/]

[bold]Basic Usage:[/]
  python pixless_cli.py <job.json>          Process with JSON job file
  python pixless_cli.py --help              Show this help
  python pixless_cli.py --example-config    Generate example job file

[bold]Options:[/]
  --verbose, -v     Enable verbose output
  --quiet, -q       Suppress all but error messages
  --log-file FILE   Write log to file
  --settings FILE   Application settings file (default: config.json)

[bold]Palette Sources:[/]
  <name>            Built-in or previously imported palette
  file:<path>       HEX/TXT or JSON palette file
  lospec:<slug>     Palette from lospec.com
"""
    console.print(help_text)

    console.print("  [bold]Dither Modes:[/]")
    for mode in DitherMode:
        console.print(f"    • [cyan]{mode.value}[/]")
    console.print()


def generate_example_config():
    """Generate and print an example job file."""
    example = {
        "_comment": "Pixless CLI job",
        "input": "path/to/input.png",
        "output": "path/to/output.png",
        "mode": "image",
        "pixelization": {
            "width": 128,
            "height": 128,
            "upscale_factor": 8,
            "resample": "box"
        },
        "dithering": {
            "enabled": True,
            "mode": "floyd_steinberg"
        },
        "palette": {
            "_comment_source": "Options: default, alternate, <saved name>, file:palette.hex, lospec:<slug>",
            "source": "default"
        }
    }

    example_json = json.dumps(example, indent=4)

    console.print("\n[bold cyan]Example Configuration:[/]\n")
    console.print(Panel(example_json, title="job.json", border_style="cyan"))
    console.print("\n[dim]Save this to a .json file and modify as needed.[/]\n")


def run(config: Dict[str, Any], palette_mgr: PaletteManager) -> bool:
    """Process a validated job. Returns True on success."""
    palette = setup_palette_from_config(config["palette"], palette_mgr)
    pipeline = build_pipeline(config, palette)

    input_path = Path(config["input"])
    output_path = Path(config["output"])
    if config["mode"] == "folder":
        return process_folder(input_path, output_path, pipeline)
    return process_single_image(input_path, output_path, pipeline)


def resolve_palette_store(settings: ConfigManager) -> Optional[Path]:
    """Saved-palette file, relative paths taken from the settings file's folder."""
    store = settings.get("palettes", "file")
    if not store:
        return None
    store = Path(store)
    if not store.is_absolute():
        store = Path(settings.config_file).resolve().parent / store
    return store


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Pixless CLI - Palette Pixel-Art Converter",
        add_help=False  # We'll handle help ourselves
    )

    parser.add_argument('config', nargs='?', help='Path to JSON job file')
    parser.add_argument('--help', '-h', action='store_true', help='Show help')
    parser.add_argument('--example-config', action='store_true', help='Generate example config')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--quiet', '-q', action='store_true', help='Quiet mode (errors only)')
    parser.add_argument('--log-file', type=str, help='Log to file')
    parser.add_argument('--settings', type=str, default='config.json', help='Application settings file')

    args = parser.parse_args(argv)

    # Handle special commands first (before logging setup)
    if args.help:
        show_banner()
        show_help()
        sys.exit(0)

    if args.example_config:
        show_banner()
        generate_example_config()
        sys.exit(0)

    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    if not args.quiet:
        show_banner()

    if not args.config:
        console.print("[bold red]Error:[/] No configuration file specified.\n")
        console.print("Usage: python pixless_cli.py <job.json>")
        console.print("       python pixless_cli.py --help\n")
        sys.exit(1)

    config_path = Path(args.config)
    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        sys.exit(1)

    logger.info(f"Loading configuration from: [cyan]{config_path}[/]")

    settings = ConfigManager(args.settings)
    palette_mgr = PaletteManager(resolve_palette_store(settings))

    try:
        config = load_config(config_path, settings)
        if not config["mode"]:
            config["mode"] = detect_mode(Path(config["input"]))
            logger.info(f"Auto-detected mode: [cyan]{config['mode']}[/]")
    except ConfigValidationError as e:
        logger.error(f"[bold red]{e}[/]")
        sys.exit(1)

    logger.info("[green]✓[/] Configuration validated")

    pix = config["pixelization"]
    logger.info(f"Input:  [cyan]{config['input']}[/]")
    logger.info(f"Output: [cyan]{config['output']}[/]")
    logger.info(f"Mode:   [cyan]{config['mode']}[/]")
    logger.info(f"Working size: [yellow]{pix['width']}x{pix['height']}[/] (x{pix['upscale_factor']})")
    if config["dithering"]["enabled"]:
        logger.info(f"Dithering: [yellow]{config['dithering']['mode']}[/]")
    else:
        logger.info("Dithering: [dim]disabled[/]")

    try:
        success = run(config, palette_mgr)
    except ConfigValidationError as e:
        logger.error(f"[bold red]{e}[/]")
        success = False

    if success:
        settings.add_recent_file(config["input"])
        settings.update_last_path("image", config["input"])
        settings.update_last_path("save", config["output"])
        settings.set("palettes", "active", value=palette_mgr.active.name)
        settings.save()
        logger.info("[bold green]✓ Processing complete![/]")
        sys.exit(0)
    else:
        logger.error("[bold red]✗ Processing failed![/]")
        sys.exit(1)


if __name__ == "__main__":
    main()
