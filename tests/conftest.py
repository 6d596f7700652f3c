"""
Test Configuration
==================

Pytest fixtures shared by the srcset widths tests: a fake layout oracle
standing in for the Playwright page, and visitor context files.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

import pytest

from errors import MeasurementError, NavigationError


class FakeOracle:
    """Oracle whose rendered width is a plain function of the viewport width."""

    def __init__(
        self,
        layout: Callable[[int], Optional[int]] = lambda viewport: viewport,
        selector: str = "img",
        fail_navigation: bool = False,
        measure_delay: float = 0.0,
    ):
        self.layout = layout
        self.selector = selector
        self.fail_navigation = fail_navigation
        self.measure_delay = measure_delay
        self.viewport: Optional[int] = None
        self.resizes: List[tuple] = []
        self.visited: List[str] = []
        self.disposed = False

    async def navigate(self, url: str) -> None:
        self.visited.append(url)
        if self.fail_navigation:
            raise NavigationError(url, "goto", "net::ERR_NAME_NOT_RESOLVED")

    async def resize(self, width: int, height: int) -> None:
        self.resizes.append((width, height))
        self.viewport = width

    async def measure(self, selector: str):
        if self.measure_delay:
            await asyncio.sleep(self.measure_delay)
        if selector != self.selector:
            raise MeasurementError(self.viewport, f"no element matches {selector}")
        return self.layout(self.viewport)

    async def dispose(self) -> None:
        self.disposed = True


def oracle_factory(oracle: FakeOracle):
    @asynccontextmanager
    async def launch():
        try:
            yield oracle
        finally:
            await oracle.dispose()

    return launch


@pytest.fixture
def fake_oracle():
    """Provide an oracle rendering the image as wide as the viewport."""
    return FakeOracle()


@pytest.fixture
def contexts_csv(tmp_path):
    """Provide the two-visitor contexts file of the end-to-end scenario."""
    path = tmp_path / "contexts.csv"
    path.write_text(
        "viewport;density;views\n"
        "300;1;10\n"
        "301;2;5\n",
        encoding="utf-8",
    )
    return path
