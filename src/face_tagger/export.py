"""Export source photos as plain JPEGs into one flat directory for the recognizer."""

from collections.abc import Callable
from pathlib import Path

import rawpy
from loguru import logger
from PIL import Image, ImageOps, UnidentifiedImageError


DEFAULT_JPEG_QUALITY = 90
DEFAULT_DIMENSIONS = 2048
NON_RAW_EXTENSIONS = frozenset(
    {
        ".jpg",
        ".jpeg",
        ".png",
        ".webp",
        ".bmp",
        ".gif",
        ".jpe",
        ".jp2",
        ".tif",
        ".tiff",
        ".heic",
        ".heif",
        ".avif",
        ".psd",
        ".ppm",
        ".pgm",
        ".pbm",
    },
)


def _pil_from_image_path(image_path: Path) -> Image.Image:
    """Open an image from a path with PIL, using rawpy unless format is known non-RAW."""
    suffix = image_path.suffix.lower()
    if suffix not in NON_RAW_EXTENSIONS:
        try:
            with rawpy.imread(str(image_path)) as raw:  # type: ignore[no-untyped-call]
                rgb = raw.postprocess()  # 8-bit RGB np.ndarray
            logger.debug("image_opened_with_rawpy", file=image_path.name)
            return Image.fromarray(rgb)
        except Exception as exc:  # noqa: BLE001
            logger.warning("rawpy_failed_falling_back_to_pil", file=image_path.name, error=str(exc))

    image = Image.open(image_path)
    # RAW decoding already applies orientation; plain files carry it in EXIF.
    return ImageOps.exif_transpose(image) or image


def unique_export_path(export_dir: Path, source: Path, taken: set[str]) -> Path:
    """
    Return a JPEG path in `export_dir` named after `source` that is free to write.

    Names already used in this batch (`taken`) or already present on disk are skipped,
    so an export never replaces an existing file.

    Examples:
        >>> taken = {"img.jpg"}
        >>> unique_export_path(Path("/tmp/x"), Path("/a/IMG.CR3"), taken).name
        'img_1.jpg'
        >>> sorted(taken)
        ['img.jpg', 'img_1.jpg']

    """
    stem = source.stem.lower()
    candidate = f"{stem}.jpg"
    counter = 1
    while candidate in taken or (export_dir / candidate).exists():
        candidate = f"{stem}_{counter}.jpg"
        counter += 1
    taken.add(candidate)
    return export_dir / candidate


def export_image(
    source: Path,
    destination: Path,
    *,
    max_size: int = DEFAULT_DIMENSIONS,
    quality: int = DEFAULT_JPEG_QUALITY,
) -> Path:
    """
    Write `source` as an RGB JPEG no larger than `max_size` pixels per side.

    Alpha is composited onto white, so the recognizer always sees 8-bit RGB.
    """
    img = _pil_from_image_path(source)
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        alpha = img.convert("RGBA")
        bg = Image.new("RGBA", alpha.size, (255, 255, 255, 255))
        img = Image.alpha_composite(bg, alpha).convert("RGB")
    else:
        img = img.convert("RGB")

    img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
    with destination.open("xb") as fh:
        img.save(fh, format="JPEG", quality=quality)
    logger.debug(
        "image_exported",
        source=str(source),
        destination=str(destination),
        width=img.width,
        height=img.height,
    )
    return destination


def export_images(
    sources: list[Path],
    export_dir: Path,
    *,
    max_size: int = DEFAULT_DIMENSIONS,
    quality: int = DEFAULT_JPEG_QUALITY,
    on_progress: Callable[[int, int], None] | None = None,
) -> dict[Path, Path]:
    """
    Export every source photo into `export_dir`.

    Args:
        sources: Photos to export
        export_dir: Flat directory receiving the JPEGs (created if missing)
        max_size: Maximum dimension in pixels of the exported JPEGs
        quality: JPEG quality (1-100)
        on_progress: Called with (number, total) after each photo is handled

    Returns:
        Mapping of source photo to exported file. Photos that fail to export are
        logged and left out.

    """
    export_dir.mkdir(parents=True, exist_ok=True)
    taken: set[str] = set()
    exports: dict[Path, Path] = {}
    total = len(sources)
    for number, source in enumerate(sources, start=1):
        destination = unique_export_path(export_dir, source, taken)
        try:
            exports[source] = export_image(source, destination, max_size=max_size, quality=quality)
        except (OSError, UnidentifiedImageError, ValueError) as exc:
            logger.error("image_export_failed", source=str(source), error=str(exc))
        if on_progress is not None:
            on_progress(number, total)
    logger.info("images_exported", count=len(exports), failed=len(sources) - len(exports))
    return exports
