"""Pixel comparison and diff region extraction.

Pixel comparison follows pixelmatch: colours are compared in YIQ space with
alpha blended over white, and pixels that only differ because of
anti-aliasing are painted in a secondary colour and not counted.
"""

from __future__ import annotations

import io
import logging
import random
from collections import deque
from typing import Callable, Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from baseline_engine.errors import BaselineEngineError, ImageDecodeError
from baseline_engine.models.baseline import (
    Baseline,
    BaselineComparison,
    CaptureMetadata,
    CurrentScreenshot,
    DiffRegion,
    DiffResult,
)
from baseline_engine.models.config import DiffConfig

logger = logging.getLogger(__name__)

ImageInput = Union[bytes, Image.Image, np.ndarray]

# Largest possible YIQ delta between two colours
MAX_YIQ_DELTA = 35215

# Rows per comparison pass and the context rows read on either side of one
BAND_ROWS = 256
BAND_HALO = 2

# Neighbour offsets in the order pixelmatch visits them (x outer, y inner)
_NEIGHBOURS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)]


# ---------------------------------------------------------------------------
# Decoding and dimension reconciliation
# ---------------------------------------------------------------------------


def decode_image(data: bytes) -> np.ndarray:
    """Decode image bytes into an RGBA array of shape (height, width, 4)."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return np.array(img.convert("RGBA"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not decode image: {e}") from e


def encode_png(pixels: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format="PNG")
    return buf.getvalue()


def _as_rgba(image: ImageInput) -> np.ndarray:
    if isinstance(image, (bytes, bytearray)):
        return decode_image(bytes(image))
    if isinstance(image, Image.Image):
        return np.array(image.convert("RGBA"), dtype=np.uint8)
    return np.ascontiguousarray(image, dtype=np.uint8)


def resize_nearest(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    """Nearest-neighbour resize: source index = floor(dst * src_dim / dst_dim)."""
    src_h, src_w = pixels.shape[:2]
    if (src_w, src_h) == (width, height):
        return pixels
    src_x = np.arange(width) * src_w // width
    src_y = np.arange(height) * src_h // height
    return np.ascontiguousarray(pixels[src_y[:, None], src_x[None, :]])


def reconcile_dimensions(baseline: np.ndarray, current: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Stretch both images onto the larger of each dimension.

    Aspect ratio is not preserved when both dimensions differ.
    """
    if baseline.shape[:2] == current.shape[:2]:
        return baseline, current
    height = max(baseline.shape[0], current.shape[0])
    width = max(baseline.shape[1], current.shape[1])
    return resize_nearest(baseline, width, height), resize_nearest(current, width, height)


# ---------------------------------------------------------------------------
# Pixel comparison
# ---------------------------------------------------------------------------


def _rgb2y(r, g, b):
    return r * 0.29889531 + g * 0.58662247 + b * 0.11448223


def _yiq(pixels: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    px = pixels.astype(np.float32)
    a = px[..., 3] / 255
    r = 255 + (px[..., 0] - 255) * a
    g = 255 + (px[..., 1] - 255) * a
    b = 255 + (px[..., 2] - 255) * a
    y = _rgb2y(r, g, b)
    i = r * 0.59597799 - g * 0.27417610 - b * 0.32180189
    q = r * 0.21147017 - g * 0.52261711 + b * 0.31114694
    return y, i, q


def _packed(pixels: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(pixels).view(np.uint32).reshape(pixels.shape[:2])


def _edge_count(xs: np.ndarray, ys: np.ndarray, width: int, height: int) -> np.ndarray:
    return ((xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)).astype(np.int32)


def _neighbour(xs, ys, dx, dy, width, height):
    nx, ny = xs + dx, ys + dy
    valid = (nx >= 0) & (nx < width) & (ny >= 0) & (ny < height)
    return np.clip(nx, 0, width - 1), np.clip(ny, 0, height - 1), valid


def _has_many_siblings(
    packed: np.ndarray, xs: np.ndarray, ys: np.ndarray, top: int, image_height: int
) -> np.ndarray:
    """True where more than two neighbours are exactly equal to the pixel.

    ``packed`` is a horizontal band starting at image row ``top``; ``ys`` are
    band rows. Image edges are judged against ``image_height``.
    """
    height, width = packed.shape
    zeroes = _edge_count(xs, ys + top, width, image_height)
    center = packed[ys, xs]
    for dx, dy in _NEIGHBOURS:
        nx, ny, valid = _neighbour(xs, ys, dx, dy, width, height)
        zeroes += valid & (packed[ny, nx] == center)
    return zeroes > 2


def _antialiased(
    luma: np.ndarray,
    packed: np.ndarray,
    other_packed: np.ndarray,
    xs: np.ndarray,
    ys: np.ndarray,
    top: int,
    image_height: int,
) -> np.ndarray:
    """Vectorised pixelmatch anti-aliasing check for the given band coordinates."""
    height, width = luma.shape
    n = xs.size
    zeroes = _edge_count(xs, ys + top, width, image_height)
    center = luma[ys, xs]

    deltas = np.zeros((len(_NEIGHBOURS), n), dtype=np.float32)
    valid = np.zeros((len(_NEIGHBOURS), n), dtype=bool)
    for k, (dx, dy) in enumerate(_NEIGHBOURS):
        nx, ny, ok = _neighbour(xs, ys, dx, dy, width, height)
        deltas[k] = np.where(ok, center - luma[ny, nx], 0)
        valid[k] = ok

    zeroes += np.sum(valid & (deltas == 0), axis=0)

    negatives = np.where(valid & (deltas < 0), deltas, 0)
    positives = np.where(valid & (deltas > 0), deltas, 0)
    min_k = np.argmin(negatives, axis=0)
    max_k = np.argmax(positives, axis=0)
    cols = np.arange(n)
    has_min = negatives[min_k, cols] != 0
    has_max = positives[max_k, cols] != 0

    offsets = np.array(_NEIGHBOURS)
    min_x = np.clip(xs + offsets[min_k, 0], 0, width - 1)
    min_y = np.clip(ys + offsets[min_k, 1], 0, height - 1)
    max_x = np.clip(xs + offsets[max_k, 0], 0, width - 1)
    max_y = np.clip(ys + offsets[max_k, 1], 0, height - 1)

    darkest = (_has_many_siblings(packed, min_x, min_y, top, image_height)
               & _has_many_siblings(other_packed, min_x, min_y, top, image_height))
    brightest = (_has_many_siblings(packed, max_x, max_y, top, image_height)
                 & _has_many_siblings(other_packed, max_x, max_y, top, image_height))

    return (zeroes <= 2) & has_min & has_max & (darkest | brightest)


def _match_band(
    baseline: np.ndarray,
    current: np.ndarray,
    output: np.ndarray,
    start: int,
    stop: int,
    config: DiffConfig,
) -> int:
    """Compare image rows ``start:stop`` and paint them into ``output``."""
    image_height = baseline.shape[0]
    # Anti-aliasing checks reach two rows out: a neighbour, then its siblings
    top = max(start - BAND_HALO, 0)
    bottom = min(stop + BAND_HALO, image_height)
    core = slice(start - top, stop - top)

    y1, i1, q1 = _yiq(baseline[top:bottom])
    y2, i2, q2 = _yiq(current[top:bottom])
    delta = (0.5053 * (y1[core] - y2[core]) ** 2
             + 0.299 * (i1[core] - i2[core]) ** 2
             + 0.1957 * (q1[core] - q2[core]) ** 2)
    max_delta = MAX_YIQ_DELTA * config.threshold * config.threshold

    # Unchanged pixels: faded grayscale of the baseline
    raw = baseline[start:stop].astype(np.float32)
    gray = 255 + (_rgb2y(raw[..., 0], raw[..., 1], raw[..., 2]) - 255) * (config.alpha * raw[..., 3] / 255)
    band = output[start:stop]
    band[..., :3] = np.clip(gray, 0, 255).astype(np.uint8)[..., None]
    band[..., 3] = 255

    ys, xs = np.nonzero(delta > max_delta)
    if config.detect_antialiasing and xs.size:
        p1, p2 = _packed(baseline[top:bottom]), _packed(current[top:bottom])
        band_ys = ys + core.start
        aa = (_antialiased(y1, p1, p2, xs, band_ys, top, image_height)
              | _antialiased(y2, p2, p1, xs, band_ys, top, image_height))
        band[ys[aa], xs[aa], :3] = config.aa_color
        ys, xs = ys[~aa], xs[~aa]

    band[ys, xs, :3] = config.diff_color
    return int(xs.size)


def pixel_match(
    baseline: np.ndarray, current: np.ndarray, config: DiffConfig, band_rows: int = BAND_ROWS
) -> tuple[int, np.ndarray]:
    """Compare two equally sized RGBA arrays.

    Returns the number of differing pixels and the rendered diff image. Rows
    are compared ``band_rows`` at a time so full-page captures only hold
    float temporaries for one band.
    """
    if baseline.shape != current.shape:
        raise ValueError(f"Image sizes do not match: {baseline.shape} vs {current.shape}")
    if band_rows < 1:
        raise ValueError("band_rows must be positive")

    output = np.empty_like(baseline)
    count = 0
    for start in range(0, baseline.shape[0], band_rows):
        stop = min(start + band_rows, baseline.shape[0])
        count += _match_band(baseline, current, output, start, stop, config)
    return count, output


# ---------------------------------------------------------------------------
# Regions
# ---------------------------------------------------------------------------


def _expand_region(
    mask: np.ndarray, start_x: int, start_y: int, step: int, visited: np.ndarray
) -> tuple[int, int, int, int]:
    """Breadth-first fill over grid cells that stay diff-coloured; returns (x, y, w, h).

    ``mask`` and ``visited`` hold one entry per grid cell.
    """
    rows, cols = mask.shape
    min_x = max_x = start_x
    min_y = max_y = start_y
    queue = deque([(start_x, start_y)])

    while queue:
        x, y = queue.popleft()
        cell = (y // step, x // step)
        if x < 0 or y < 0 or cell[0] >= rows or cell[1] >= cols:
            continue
        if visited[cell]:
            continue
        visited[cell] = True
        if not mask[cell]:
            continue

        min_x, max_x = min(min_x, x), max(max_x, x)
        min_y, max_y = min(min_y, y), max(max_y, y)
        queue.extend(((x + step, y), (x - step, y), (x, y + step), (x, y - step)))

    return min_x, min_y, max_x - min_x + 1, max_y - min_y + 1


def _is_empty(pixels: np.ndarray, x: int, y: int, cutoff: int) -> bool:
    """Transparent, near-white, or outside the image."""
    height, width = pixels.shape[:2]
    if x >= width or y >= height:
        return True
    r, g, b, a = (int(c) for c in pixels[y, x])
    return a == 0 or (r > cutoff and g > cutoff and b > cutoff)


def classify_region(
    baseline: np.ndarray,
    current: np.ndarray,
    x: int,
    y: int,
    width: int,
    height: int,
    config: DiffConfig,
    rng: random.Random,
) -> str:
    """Decide whether content was added, removed, or changed inside a box."""
    samples = config.sample_count
    baseline_empty = current_empty = 0
    for _ in range(samples):
        sx = x + int(rng.random() * width)
        sy = y + int(rng.random() * height)
        if _is_empty(baseline, sx, sy, config.empty_channel_cutoff):
            baseline_empty += 1
        if _is_empty(current, sx, sy, config.empty_channel_cutoff):
            current_empty += 1

    if baseline_empty >= samples * config.added_ratio and current_empty <= samples * config.removed_ratio:
        return "added"
    if baseline_empty <= samples * config.removed_ratio and current_empty >= samples * config.added_ratio:
        return "removed"
    return "changed"


def regions_overlap(a: DiffRegion, b: DiffRegion, margin: int = 20) -> bool:
    """True when the boxes intersect once each is grown by ``margin``."""
    return not (
        a.x + a.width + margin < b.x
        or b.x + b.width + margin < a.x
        or a.y + a.height + margin < b.y
        or b.y + b.height + margin < a.y
    )


def _union(a: DiffRegion, b: DiffRegion) -> DiffRegion:
    min_x, min_y = min(a.x, b.x), min(a.y, b.y)
    max_x = max(a.x + a.width, b.x + b.width)
    max_y = max(a.y + a.height, b.y + b.height)
    return DiffRegion(
        x=min_x,
        y=min_y,
        width=max_x - min_x,
        height=max_y - min_y,
        type=a.type,
        confidence=min(a.confidence, b.confidence),
    )


def merge_regions(regions: list[DiffRegion], margin: int = 20) -> list[DiffRegion]:
    """Union nearby regions until a full pass merges nothing."""
    merged = list(regions)
    changed = True
    while changed:
        changed = False
        result: list[DiffRegion] = []
        for region in merged:
            for i, existing in enumerate(result):
                if regions_overlap(existing, region, margin):
                    result[i] = _union(existing, region)
                    changed = True
                    break
            else:
                result.append(region)
        merged = result
    return merged


def find_diff_regions(
    diff: np.ndarray,
    baseline: np.ndarray,
    current: np.ndarray,
    config: DiffConfig,
    rng: random.Random,
) -> list[DiffRegion]:
    """Scan the diff image on a sparse grid and return merged, classified regions.

    ``baseline`` and ``current`` are the images as captured (before any
    resizing); classification samples them at diff-image coordinates.
    """
    step = config.grid_step
    height, width = diff.shape[:2]
    mask = np.all(diff[::step, ::step, :3] == np.array(config.diff_color, dtype=np.uint8), axis=-1)
    visited = np.zeros_like(mask)

    regions: list[DiffRegion] = []
    for y in range(0, height, step):
        for x in range(0, width, step):
            if visited[y // step, x // step] or not mask[y // step, x // step]:
                continue
            rx, ry, rw, rh = _expand_region(mask, x, y, step, visited)
            if rw < config.min_region_size or rh < config.min_region_size:
                continue
            regions.append(DiffRegion(
                x=rx, y=ry, width=rw, height=rh,
                type=classify_region(baseline, current, rx, ry, rw, rh, config, rng),
                confidence=config.confidence,
            ))

    return merge_regions(regions, config.merge_margin)


# ---------------------------------------------------------------------------
# Differ
# ---------------------------------------------------------------------------


class VisualDiffer:
    """Compares screenshots against stored baselines."""

    def __init__(
        self,
        config: Optional[DiffConfig] = None,
        image_loader: Optional[Callable[[Baseline], bytes]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or DiffConfig()
        self.image_loader = image_loader
        self.rng = rng or random.Random()

    def diff_images(self, baseline_image: ImageInput, current_image: ImageInput) -> DiffResult:
        """Run reconciliation, pixel comparison, and region extraction."""
        baseline = _as_rgba(baseline_image)
        current = _as_rgba(current_image)
        if baseline.shape[:2] != current.shape[:2]:
            logger.debug("Reconciling image sizes %s and %s", baseline.shape[:2], current.shape[:2])
        resized_baseline, resized_current = reconcile_dimensions(baseline, current)
        height, width = resized_baseline.shape[:2]

        pixels_diff, diff = pixel_match(resized_baseline, resized_current, self.config)
        total_pixels = width * height
        percentage = round(pixels_diff / total_pixels * 100, 2) if total_pixels else 0.0
        has_differences = pixels_diff > 0

        regions: list[DiffRegion] = []
        if has_differences:
            regions = find_diff_regions(diff, baseline, current, self.config, self.rng)

        return DiffResult(
            has_differences=has_differences,
            percentage=percentage,
            pixels_diff=pixels_diff,
            total_pixels=total_pixels,
            width=width,
            height=height,
            diff_image=encode_png(diff) if has_differences else None,
            regions=regions or None,
        )

    def compare(
        self,
        baseline: Baseline,
        current: bytes,
        metadata: CaptureMetadata | dict | None = None,
    ) -> BaselineComparison:
        """Compare a screenshot with a stored baseline.

        Raises when the baseline image cannot be fetched or decoded. An
        unreadable current screenshot counts as a complete difference.
        """
        try:
            if self.image_loader is None:
                raise BaselineEngineError("No image loader configured for baseline images")
            baseline_pixels = decode_image(self.image_loader(baseline))
        except Exception as e:
            logger.error("Visual diff failed for baseline %s: %s", baseline.id, e)
            raise

        try:
            diff = self.diff_images(baseline_pixels, current)
        except ImageDecodeError as e:
            logger.warning("Current screenshot for %s is unreadable: %s", baseline.route, e)
            total = baseline_pixels.shape[0] * baseline_pixels.shape[1]
            diff = DiffResult(
                has_differences=True,
                percentage=100.0,
                pixels_diff=total,
                total_pixels=total,
                width=baseline_pixels.shape[1],
                height=baseline_pixels.shape[0],
            )

        if isinstance(metadata, dict):
            metadata = CaptureMetadata(**metadata)

        return BaselineComparison(
            baseline=baseline,
            current=CurrentScreenshot(screenshot=current, metadata=metadata or CaptureMetadata()),
            diff=diff,
        )
