"""
Visitor contexts.
Loads the viewport widths, screen densities and view counts of actual site
visitors from an analytics export, and derives the viewport range to sweep.
"""

import csv
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from errors import ContextsError

logger = logging.getLogger(__name__)

COLUMN_ALIASES = {
    "viewport": [
        "viewport",
        "viewport width",
        "viewport_width",
        "browser width",
        "screen width",
        "width",
    ],
    "density": [
        "density",
        "screen density",
        "pixel ratio",
        "pixel density",
        "device pixel ratio",
        "devicepixelratio",
        "dpr",
    ],
    "views": [
        "views",
        "page views",
        "pageviews",
        "sessions",
        "users",
        "hits",
        "count",
    ],
}

CSV_DELIMITERS = ",;\t"
# "1,234", "1.234", "1 234" or "1'234": digits grouped by thousands
GROUPED_NUMBER = re.compile(r"^\d{1,3}(?:[\s,.']\d{3})+$")


@dataclass(frozen=True)
class VisitorRecord:
    viewport: int
    density: float
    views: int


@dataclass(frozen=True)
class SweepRange:
    min: int
    max: int

    def __post_init__(self) -> None:
        if self.min <= 0:
            raise ContextsError(f"Minimum viewport must be positive, got {self.min}")
        if self.max < self.min:
            raise ContextsError(f"Maximum viewport {self.max} is lower than minimum viewport {self.min}")

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.min, self.max + 1))

    def __len__(self) -> int:
        return self.max - self.min + 1

    def __contains__(self, viewport: object) -> bool:
        return isinstance(viewport, int) and self.min <= viewport <= self.max


def normalize_header(value: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"[()\[\]]|\bpx\b", "", value or "")).strip().lower()


def parse_viewport(value: Any) -> int:
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().lower()
    # "1440x900" screen resolutions keep only the width
    text = text.split("x", 1)[0] if re.match(r"^\d+\s*x\s*\d+$", text) else text
    return int(re.sub(r"px$", "", text).strip())


def parse_density(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower().rstrip("x").strip()
    return float(text.replace(",", "."))


def parse_views(value: Any) -> int:
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if GROUPED_NUMBER.match(text):
            return int(re.sub(r"\D", "", text))
        number = float(text.replace(",", "."))
    if not number.is_integer():
        raise ValueError(f"Fractional view count {value!r}")
    return int(number)


def resolve_columns(header: Iterable[str]) -> Dict[str, str]:
    normalized = {normalize_header(name): name for name in header if name}
    columns = {}
    for key, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in normalized:
                columns[key] = normalized[alias]
                break
    missing = [key for key in COLUMN_ALIASES if key not in columns]
    if missing:
        raise ContextsError(f"Missing column(s) {', '.join(missing)} in contexts header")
    return columns


def read_csv_rows(text: str, delimiter: Optional[str] = None) -> Iterator[Dict[str, str]]:
    lines = [line for line in text.splitlines() if line.strip() and not line.startswith("#")]
    if not lines:
        raise ContextsError("Contexts file has no header")
    if delimiter is None:
        delimiter = max(CSV_DELIMITERS, key=lines[0].count)
    reader = csv.DictReader(lines, delimiter=delimiter)
    columns = resolve_columns(reader.fieldnames or [])
    for row in reader:
        yield {key: row.get(column, "") for key, column in columns.items()}


def read_json_rows(text: str) -> Iterator[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ContextsError(f"Invalid JSON contexts: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("contexts", data.get("items"))
    if not isinstance(data, list):
        raise ContextsError("JSON contexts must be a list of objects")
    items = [item for item in data if isinstance(item, dict)]
    if not items:
        return
    columns = resolve_columns({key for item in items for key in item})
    for item in items:
        yield {key: item.get(column) for key, column in columns.items()}


def load_contexts(path: Union[str, Path], delimiter: Optional[str] = None) -> List[VisitorRecord]:
    """Load visitor contexts from a CSV or JSON analytics export.

    Rows that cannot be parsed, or that have a non-positive viewport or
    density, are skipped. Rows sharing a viewport and density are merged.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise ContextsError(f"Couldn't read contexts file {path}: {exc}") from exc

    if path.suffix.lower() == ".json" or text.lstrip().startswith(("[", "{")):
        rows: Iterable[Dict[str, Any]] = read_json_rows(text)
    else:
        rows = read_csv_rows(text, delimiter)

    merged: Dict[Tuple[int, float], int] = {}
    skipped = 0
    for index, row in enumerate(rows, start=1):
        try:
            viewport = parse_viewport(row["viewport"])
            density = parse_density(row["density"])
            views = parse_views(row["views"])
        except (TypeError, ValueError):
            skipped += 1
            logger.warning("Skipping unparsable context row %d: %s", index, row)
            continue
        if viewport <= 0 or density <= 0 or views < 0:
            skipped += 1
            logger.warning("Skipping invalid context row %d: %s", index, row)
            continue
        key = (viewport, density)
        merged[key] = merged.get(key, 0) + views

    records = [
        VisitorRecord(viewport=viewport, density=density, views=views)
        for (viewport, density), views in merged.items()
    ]
    logger.info("%d contexts loaded from %s (%d skipped)", len(records), path, skipped)
    return records


def derive_viewport_bounds(
    records: Iterable[VisitorRecord],
    min_viewport: Optional[int] = None,
    max_viewport: Optional[int] = None,
) -> SweepRange:
    """Viewport range covering every context with views; explicit bounds win."""
    viewports = [record.viewport for record in records if record.views > 0]
    if not viewports and (min_viewport is None or max_viewport is None):
        raise ContextsError("No contexts with views to derive viewport bounds from")

    low = min_viewport if min_viewport is not None else min(viewports)
    high = max_viewport if max_viewport is not None else max(viewports)
    bounds = SweepRange(low, high)
    logger.info("Viewport range: %dpx to %dpx", bounds.min, bounds.max)
    return bounds
