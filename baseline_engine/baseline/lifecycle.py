"""Keyed baselines: capture from the reference deployment, bootstrap on first use, compare."""

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

from playwright.async_api import Page, async_playwright

from baseline_engine.baseline.differ import VisualDiffer, decode_image
from baseline_engine.errors import BaselineUploadError, ImageDecodeError, is_not_found_error
from baseline_engine.models.baseline import (
    CapturedBaseline,
    ComparisonOutcome,
    ComparisonState,
    FetchOutcome,
    FetchStatus,
    ViewportSize,
)
from baseline_engine.models.config import EngineConfig, ViewportConfig
from baseline_engine.routes import RouteManifest
from baseline_engine.storage.base import StorageProvider
from baseline_engine.utils.browser import (
    build_route_url,
    capture_full_page,
    create_capture_context,
    launch_capture_browser,
)

logger = logging.getLogger(__name__)

BASELINE_PREFIX = "baselines/"

Viewport = ViewportConfig | ViewportSize


def viewport_key(viewport: Viewport) -> str:
    return f"{viewport.width}x{viewport.height}"


def get_baseline_key(route: str, viewport: Viewport) -> str:
    """Storage key for a route at a viewport.

    Slashes become underscores, so "/a_b" and "/a/b" share a key.
    """
    sanitized = route.replace("/", "_").strip("_") or "root"
    return f"{BASELINE_PREFIX}{sanitized}_{viewport.width}x{viewport.height}.png"


class BaselineLifecycleManager:
    """Creates, fetches, and compares keyed baselines captured from a reference deployment.

    Lookups and bulk capture never raise; only :meth:`update_baseline`
    propagates a storage failure.
    """

    def __init__(
        self,
        config: EngineConfig,
        storage: StorageProvider,
        route_manifest: Optional[RouteManifest] = None,
        differ: Optional[VisualDiffer] = None,
    ):
        self.config = config
        self.storage = storage
        self.route_manifest = route_manifest or RouteManifest(config.route_manifest_path)
        self.differ = differ or VisualDiffer(config.diff)

    @property
    def reference_url(self) -> Optional[str]:
        return self.config.reference_url

    # ------------------------------------------------------------------
    # Bulk creation
    # ------------------------------------------------------------------

    async def create_baselines(
        self, routes: Sequence[str], viewports: Sequence[Viewport]
    ) -> list[CapturedBaseline]:
        """Capture every route at every viewport from the reference URL."""
        if not self.reference_url:
            logger.info("No reference URL configured; skipping baseline creation")
            return []

        base_url = self.reference_url
        logger.info("Creating baselines from %s (%d routes x %d viewports)",
                    base_url, len(routes), len(viewports))
        results: list[CapturedBaseline] = []

        try:
            async with async_playwright() as p:
                browser = await launch_capture_browser(p, headless=self.config.headless)
                try:
                    context = await create_capture_context(browser)
                    page = await context.new_page()

                    for route in routes:
                        for viewport in viewports:
                            try:
                                result = await self._capture_baseline(page, base_url, route, viewport)
                                self._save_captured(result)
                                results.append(result)
                            except Exception as e:
                                logger.warning("Failed to capture baseline for %s at %s: %s",
                                               route, viewport_key(viewport), e)
                finally:
                    await browser.close()
        except Exception as e:
            logger.warning("Baseline creation from %s aborted: %s", base_url, e)

        logger.info("Created %d baselines", len(results))
        return results

    async def create_all_baselines(self, viewports: Sequence[Viewport]) -> list[CapturedBaseline]:
        """Baseline every route listed in the route manifest."""
        manifest = self.route_manifest.load()
        if manifest is None or not manifest.routes:
            logger.warning("No route manifest found at %s", self.route_manifest.path)
            return []

        logger.info("Found %d routes in manifest", len(manifest.routes))
        return await self.create_baselines(manifest.routes, viewports)

    async def create_missing_baselines(
        self, routes: Sequence[str], viewports: Sequence[Viewport]
    ) -> list[CapturedBaseline]:
        """Capture routes that have no baseline at any viewport."""
        existing = self._existing_keys()
        missing = [
            route for route in routes
            if not any(get_baseline_key(route, vp) in existing for vp in viewports)
        ]

        if not missing:
            logger.info("All routes have baselines")
            return []

        logger.info("Creating baselines for %d new routes: %s", len(missing), ", ".join(missing))
        return await self.create_baselines(missing, viewports)

    async def create_baselines_from_main_branch(self) -> bool:
        """Baseline all manifest routes at the configured viewports."""
        if not self.reference_url:
            logger.warning("No reference URL configured for main branch baseline creation")
            return False

        routes = self.route_manifest.routes() or ["/"]
        results = await self.create_baselines(routes, self.config.viewports)
        return len(results) > 0

    async def ensure_baselines(self, routes: Sequence[str], viewports: Sequence[Viewport]) -> None:
        """Make sure baselines exist before a visual run. Never raises."""
        if not self.reference_url:
            logger.info("No reference URL configured. Skipping baseline creation and visual comparisons.")
            return

        try:
            if not self._has_any_baselines():
                logger.info("No baselines found. Creating initial baselines from %s", self.reference_url)
                await self.create_baselines(routes, viewports)
            else:
                await self.create_missing_baselines(routes, viewports)
        except Exception as e:
            logger.warning("Baseline initialization failed: %s", e)
            logger.info("Visual tests will continue but comparison will be skipped for missing baselines")

    async def _capture_baseline(
        self, page: Page, base_url: str, route: str, viewport: Viewport
    ) -> CapturedBaseline:
        url = build_route_url(base_url, route)
        await page.set_viewport_size({"width": viewport.width, "height": viewport.height})
        await page.goto(url, wait_until="networkidle", timeout=self.config.navigation_timeout_ms)
        await page.wait_for_timeout(self.config.settle_delay_ms)
        screenshot = await capture_full_page(page)
        return CapturedBaseline(
            route=route,
            viewport=ViewportSize(width=viewport.width, height=viewport.height),
            screenshot=screenshot,
            key=get_baseline_key(route, viewport),
        )

    def _save_captured(self, result: CapturedBaseline) -> None:
        self.storage.upload_file(
            result.key,
            result.screenshot,
            content_type="image/png",
            metadata={
                "route": result.route,
                "viewport": result.viewport.key,
                "timestamp": str(result.timestamp),
                "source": "production",
            },
        )
        logger.info("Saved baseline: %s", result.key)

    def _existing_keys(self) -> set[str]:
        try:
            return set(self.storage.list_files(BASELINE_PREFIX))
        except Exception as e:
            logger.warning("Could not list existing baselines, treating as cold start: %s", e)
            return set()

    def _has_any_baselines(self) -> bool:
        return any(key.endswith(".png") for key in self._existing_keys())

    # ------------------------------------------------------------------
    # Fetch / update / compare
    # ------------------------------------------------------------------

    def fetch_baseline_outcome(self, route: str, viewport: Viewport) -> FetchOutcome:
        key = get_baseline_key(route, viewport)
        try:
            data = self.storage.download_file(key)
        except Exception as e:
            if is_not_found_error(e):
                logger.info("No baseline found for %s at %s", route, viewport_key(viewport))
                return FetchOutcome(status=FetchStatus.ABSENT)
            logger.warning("Unexpected error fetching baseline %s: %s", key, e)
            return FetchOutcome(status=FetchStatus.ERROR, error=str(e))
        logger.debug("Baseline found: %s", key)
        return FetchOutcome(status=FetchStatus.FOUND, data=data)

    def fetch_baseline(self, route: str, viewport: Viewport) -> bytes | None:
        """Return the stored baseline bytes, or None when absent or unreadable."""
        outcome = self.fetch_baseline_outcome(route, viewport)
        if outcome.status == FetchStatus.FOUND:
            return outcome.data
        return None

    def update_baseline(self, route: str, viewport: Viewport, screenshot: bytes) -> None:
        """Store a screenshot as the baseline. Raises BaselineUploadError on failure."""
        key = get_baseline_key(route, viewport)
        logger.debug("Uploading baseline to %s", key)
        try:
            self.storage.upload_file(
                key,
                screenshot,
                content_type="image/png",
                metadata={
                    "route": route,
                    "viewport": viewport_key(viewport),
                    "timestamp": str(int(time.time() * 1000)),
                    "source": "update",
                },
            )
        except Exception as e:
            logger.error("Failed to upload baseline %s: %s", key, e)
            raise BaselineUploadError(
                f"Baseline upload failed for {route} at {viewport_key(viewport)}: {e}"
            ) from e
        logger.info("Updated baseline: %s", key)

    def compare_with_baseline(self, route: str, viewport: Viewport, screenshot: bytes) -> ComparisonOutcome:
        """Compare a screenshot with the stored baseline, seeding it on first use."""
        vp = viewport_key(viewport)
        baseline = self.fetch_baseline(route, viewport)

        if baseline is None:
            logger.info("Creating new baseline for %s at %s", route, vp)
            try:
                self.update_baseline(route, viewport, screenshot)
            except BaselineUploadError as e:
                logger.error("Failed to create baseline for %s: %s", route, e)
            return ComparisonOutcome(
                has_difference=False, diff_percentage=0, state=ComparisonState.BOOTSTRAPPED,
            )

        try:
            current_pixels = decode_image(screenshot)
            baseline_pixels = decode_image(baseline)
        except ImageDecodeError as e:
            logger.warning("Failed to compare images for %s at %s: %s", route, vp, e)
            return ComparisonOutcome(
                has_difference=True, diff_percentage=100, state=ComparisonState.UNREADABLE,
            )

        if current_pixels.shape[:2] != baseline_pixels.shape[:2]:
            logger.warning("Image dimensions mismatch for %s at %s", route, vp)
            return ComparisonOutcome(
                has_difference=True, diff_percentage=100, state=ComparisonState.DIMENSION_MISMATCH,
            )

        result = self.differ.diff_images(baseline_pixels, current_pixels)
        diff_percentage = result.pixels_diff / result.total_pixels * 100 if result.total_pixels else 0.0

        if diff_percentage > self.config.noise_floor_percentage:
            logger.info("Visual difference for %s at %s: %.2f%%", route, vp, diff_percentage)
            return ComparisonOutcome(
                has_difference=True,
                diff_percentage=diff_percentage,
                diff_image=result.diff_image,
                regions=result.regions,
            )
        return ComparisonOutcome(has_difference=False, diff_percentage=diff_percentage)
