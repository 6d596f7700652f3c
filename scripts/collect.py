#!/usr/bin/env python3
"""
Srcset widths - Collection Script
Measures an image's rendered width across viewport widths using Playwright,
then combines it with actual visitor contexts to choose the srcset widths.
"""

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

try:
    from playwright.async_api import async_playwright, Browser, Page
    from playwright.async_api import Error as PlaywrightError
except ImportError:
    print("ERROR: playwright not installed. Run: pip install playwright && playwright install chromium")
    raise SystemExit(1)

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn

from contexts import SweepRange, VisitorRecord, derive_viewport_bounds, load_contexts
from errors import BrowserError, MeasurementError, NavigationError, SrcsetError, WriteError
from report import (
    build_results,
    log_distribution,
    log_variations,
    write_destination,
    write_results_json,
    write_variations_csv,
)
from widths import (
    DemandDistribution,
    SrcsetPlan,
    WidthVariations,
    aggregate_perfect_widths,
    select_srcset_widths,
)

logger = logging.getLogger(__name__)

VIEWPORT_HEIGHT = 2000
DEFAULT_SELECTOR = "img"
DEFAULT_DELAY = 5
DEFAULT_WIDTHS_NUMBER = 5
NAVIGATION_TIMEOUT = 60000

MEASURE_SCRIPT = """(sel) => {
    const el = document.querySelector(sel);
    if (!el) {
        return null;
    }
    if (typeof el.width === 'number') {
        return el.width;
    }
    if (typeof el.offsetWidth === 'number') {
        return el.offsetWidth;
    }
    return Math.round(el.getBoundingClientRect().width);
}"""


@dataclass
class Options:
    url: str
    contexts_file: str
    selector: str = DEFAULT_SELECTOR
    variations_file: Optional[str] = None
    dest_file: Optional[str] = None
    results_file: Optional[str] = None
    min_viewport: Optional[int] = None
    max_viewport: Optional[int] = None
    delay: float = DEFAULT_DELAY
    widths_number: int = DEFAULT_WIDTHS_NUMBER
    step_timeout: Optional[float] = None
    base_path: Path = field(default_factory=Path.cwd)
    verbose: bool = False

    def validate(self) -> "Options":
        if not self.url:
            raise ValueError("A page url is required")
        if not self.contexts_file:
            raise ValueError("A contexts file is required")
        if not self.selector:
            raise ValueError("An image selector is required")
        if self.delay < 0:
            raise ValueError(f"Delay must be non-negative, got {self.delay}")
        if self.widths_number < 1:
            raise ValueError(f"Number of widths must be at least 1, got {self.widths_number}")
        if self.step_timeout is not None and self.step_timeout <= 0:
            raise ValueError(f"Step timeout must be positive, got {self.step_timeout}")
        for name in ("min_viewport", "max_viewport"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if (
            self.min_viewport is not None
            and self.max_viewport is not None
            and self.min_viewport > self.max_viewport
        ):
            raise ValueError(f"min_viewport {self.min_viewport} is greater than max_viewport {self.max_viewport}")
        return self

    def resolve(self, path: str) -> Path:
        return Path(self.base_path) / path

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Options":
        return cls(
            url=args.url,
            contexts_file=args.contexts,
            selector=args.selector,
            variations_file=args.variations,
            dest_file=args.dest,
            results_file=args.results,
            min_viewport=args.min_viewport,
            max_viewport=args.max_viewport,
            delay=args.delay,
            widths_number=args.widths_number,
            step_timeout=args.step_timeout,
            base_path=Path(args.base_path) if args.base_path else Path.cwd(),
            verbose=args.verbose,
        )


class PlaywrightOracle:
    """Owns the browser page whose viewport is resized and measured.

    The page viewport is shared state: only one sweep may drive an oracle,
    and each resize is awaited before the next measurement.
    """

    def __init__(self, browser: Browser, page: Page):
        self.browser = browser
        self.page = page
        self.viewport: Optional[int] = None
        self._closed = False

    @classmethod
    @asynccontextmanager
    async def launch(cls, headless: bool = True) -> AsyncIterator["PlaywrightOracle"]:
        async with async_playwright() as p:
            try:
                browser = await p.chromium.launch(headless=headless)
                context = await browser.new_context(
                    viewport={"width": 1280, "height": VIEWPORT_HEIGHT},
                    device_scale_factor=1,
                )
                page = await context.new_page()
            except PlaywrightError as exc:
                raise BrowserError(exc) from exc
            oracle = cls(browser, page)
            try:
                yield oracle
            finally:
                await oracle.dispose()

    async def navigate(self, url: str) -> None:
        stage = "goto"
        try:
            response = await self.page.goto(url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT)
            stage = "response"
            if response is not None and not response.ok:
                raise NavigationError(url, stage, f"HTTP {response.status}")
            stage = "wait_body"
            await self.page.wait_for_selector("body", state="attached", timeout=15000)
        except PlaywrightError as exc:
            raise NavigationError(url, stage, exc) from exc

    async def resize(self, width: int, height: int = VIEWPORT_HEIGHT) -> None:
        try:
            await self.page.set_viewport_size({"width": width, "height": height})
        except PlaywrightError as exc:
            raise MeasurementError(width, f"couldn't resize viewport: {exc}") from exc
        self.viewport = width

    async def measure(self, selector: str) -> int:
        viewport = self.viewport or 0
        try:
            width = await self.page.evaluate(MEASURE_SCRIPT, selector)
        except PlaywrightError as exc:
            raise MeasurementError(viewport, f"couldn't measure {selector}: {exc}") from exc
        if width is None:
            raise MeasurementError(viewport, f"no element matches {selector}")
        return width

    async def dispose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.browser.close()


async def _bounded(step: Awaitable[Any], viewport: int, timeout: Optional[float], what: str) -> Any:
    if timeout is None:
        return await step
    try:
        return await asyncio.wait_for(step, timeout)
    except asyncio.TimeoutError as exc:
        raise MeasurementError(viewport, f"{what} took more than {timeout}s") from exc


def _as_pixels(value: Any, viewport: int) -> int:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MeasurementError(viewport, f"invalid rendered width {value!r}")
    return value


async def sweep_viewports(
    oracle: Any,
    bounds: SweepRange,
    selector: str,
    delay: float = DEFAULT_DELAY,
    step_timeout: Optional[float] = None,
    progress: Optional[Callable[[int, int], None]] = None,
) -> WidthVariations:
    """Measure the rendered width of `selector` at every viewport width in `bounds`.

    `delay` is in milliseconds and gives layout and scripts time to react to
    each resize. The first failed measurement aborts the whole sweep.
    """
    variations = WidthVariations(start=bounds.min)
    for viewport in bounds:
        await _bounded(oracle.resize(viewport, VIEWPORT_HEIGHT), viewport, step_timeout, "resize")
        if delay:
            await asyncio.sleep(delay / 1000)
        width = await _bounded(oracle.measure(selector), viewport, step_timeout, "measure")
        variations.append(viewport, _as_pixels(width, viewport))
        logger.debug("Viewport %dpx: image %dpx", viewport, variations.widths[-1])
        if progress:
            progress(viewport, bounds.max)
    logger.info("Finished at viewport: %dpx", bounds.max)
    return variations


class SweepProgress:
    """Spinner and bar showing the viewport currently measured."""

    def __init__(self, bounds: SweepRange, enabled: bool = True, console: Optional[Console] = None):
        self.bounds = bounds
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console or Console(stderr=True),
            transient=True,
            disable=not enabled,
        )
        self.task: Optional[TaskID] = None

    def __enter__(self) -> "SweepProgress":
        self.progress.start()
        self.task = self.progress.add_task("Starting…", total=len(self.bounds))
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.progress.stop()

    def __call__(self, viewport: int, last: int) -> None:
        self.progress.update(self.task, advance=1, description=f"Current viewport: {viewport}px / {last}px")

    @property
    def completed(self) -> float:
        return self.progress.tasks[0].completed if self.progress.tasks else 0


@dataclass
class RunResult:
    options: Options
    records: List[VisitorRecord]
    variations: WidthVariations
    distribution: DemandDistribution
    plan: SrcsetPlan
    write_errors: List[WriteError] = field(default_factory=list)


def _try_write(errors: List[WriteError], write: Callable[..., None], *args: Any) -> None:
    try:
        write(*args)
    except WriteError as exc:
        logger.error("%s", exc)
        errors.append(exc)


async def run(
    options: Options,
    oracle_factory: Optional[Callable[[], Any]] = None,
) -> RunResult:
    """Run the whole computation; only file writes are allowed to fail softly."""
    options.validate()

    logger.info("Step 1: get actual contexts (viewports & screen densities) of site visitors")
    records = load_contexts(options.resolve(options.contexts_file))
    bounds = derive_viewport_bounds(records, options.min_viewport, options.max_viewport)
    options = replace(options, min_viewport=bounds.min, max_viewport=bounds.max)

    logger.info("Step 2: get variations of image width across viewport widths")
    factory = oracle_factory or PlaywrightOracle.launch
    async with factory() as oracle:
        logger.info("Go to %s", options.url)
        await oracle.navigate(options.url)
        logger.info("Checking widths of image %s", options.selector)
        with SweepProgress(bounds, enabled=options.verbose) as tick:
            variations = await sweep_viewports(
                oracle,
                bounds,
                options.selector,
                delay=options.delay,
                step_timeout=options.step_timeout,
                progress=tick,
            )

    write_errors: List[WriteError] = []
    log_variations(variations)
    if options.variations_file:
        _try_write(write_errors, write_variations_csv, options.resolve(options.variations_file), variations)

    logger.info("Step 3: compute optimal %d widths from both datasets", options.widths_number)
    logger.info("Compute all perfect image widths")
    distribution = aggregate_perfect_widths(variations, records)
    log_distribution(distribution)

    logger.info("Find %d best widths", options.widths_number)
    plan = select_srcset_widths(distribution, options.widths_number)

    if options.dest_file:
        _try_write(
            write_errors,
            write_destination,
            options.resolve(options.dest_file),
            options.url,
            options.selector,
            plan,
        )
    if options.results_file:
        results = build_results(options.url, options.selector, variations, distribution, plan)
        _try_write(write_errors, write_results_json, options.resolve(options.results_file), results)

    return RunResult(
        options=options,
        records=records,
        variations=variations,
        distribution=distribution,
        plan=plan,
        write_errors=write_errors,
    )


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compute the best srcset widths for an image of a web page")
    parser.add_argument("url", help="Page containing the image")
    parser.add_argument("--contexts", "-c", required=True, help="CSV or JSON file of visitor viewports, densities and views")
    parser.add_argument("--selector", "-s", default=DEFAULT_SELECTOR, help="CSS selector of the image")
    parser.add_argument("--variations", help="CSV file receiving the image width of every viewport width")
    parser.add_argument("--dest", "-d", help="Text file receiving the srcset widths")
    parser.add_argument("--results", help="JSON file receiving all computed data")
    parser.add_argument("--min-viewport", type=int, help="Smallest viewport width to check (defaults to contexts)")
    parser.add_argument("--max-viewport", type=int, help="Largest viewport width to check (defaults to contexts)")
    parser.add_argument(
        "--delay",
        type=float,
        default=DEFAULT_DELAY,
        help="Milliseconds to wait after each resize for layout and scripts to settle",
    )
    parser.add_argument("--widths-number", "-n", type=int, default=DEFAULT_WIDTHS_NUMBER, help="Number of srcset widths")
    parser.add_argument("--step-timeout", type=float, help="Seconds allowed for each resize and each measurement")
    parser.add_argument("--base-path", help="Directory relative file paths resolve against (defaults to cwd)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every step")
    return parser


async def main_async(options: Options) -> RunResult:
    return await run(options)


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        options = Options.from_args(args).validate()
    except ValueError as exc:
        parser.error(str(exc))

    try:
        result = asyncio.run(main_async(options))
    except SrcsetError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    print("\n✅ Srcset widths computed")
    print(f"Page: {options.url}")
    print(f"Widths: {', '.join(str(w) for w in result.plan)}")
    print(f"Waste: {result.plan.waste:.2f}px per view")
    if result.write_errors:
        print(f"⚠️  {len(result.write_errors)} file(s) could not be written")


if __name__ == "__main__":
    main()
