"""
Result output: console tables, variations CSV, srcset summary and JSON results.
Writers raise WriteError; callers decide whether a failed write matters.
"""

import io
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from errors import WriteError
from widths import DemandDistribution, SrcsetPlan, WidthVariations

logger = logging.getLogger(__name__)

VARIATIONS_HEADER = "viewport width (px);image width (px)"


def now_iso() -> str:
    return datetime.now().isoformat()


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, content: str) -> None:
    try:
        ensure_dir(path.parent)
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise WriteError(path, exc) from exc


def write_json(path: Path, data: Any) -> None:
    try:
        ensure_dir(path.parent)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
    except OSError as exc:
        raise WriteError(path, exc) from exc


def build_table(head: Sequence[str], rows: List[Sequence[str]]) -> Table:
    table = Table(box=box.SIMPLE_HEAD, header_style="green")
    for name in head:
        table.add_column(name, justify="right")
    for row in rows:
        table.add_row(*row)
    return table


def render_table(table: Table, width: int = 100) -> str:
    buffer = io.StringIO()
    Console(file=buffer, width=width, color_system=None).print(table)
    return buffer.getvalue().rstrip()


def format_percentage(share: float) -> str:
    return f"{share * 100:.2f} %"


def variations_table(variations: WidthVariations) -> Table:
    rows = [[f"{viewport}px", f"{width}px"] for viewport, width in variations.items()]
    return build_table(["viewport width", "image width"], rows)


def distribution_table(distribution: DemandDistribution) -> Table:
    rows = [[format_percentage(share), f"{width}px"] for width, share in distribution.ranked()]
    return build_table(["percentage", "image width"], rows)


def log_variations(variations: WidthVariations) -> None:
    if logger.isEnabledFor(logging.INFO):
        logger.info("\n%s", render_table(variations_table(variations)))


def log_distribution(distribution: DemandDistribution) -> None:
    logger.info("%d perfect widths have been computed", len(distribution))
    if logger.isEnabledFor(logging.INFO):
        logger.info("\n%s", render_table(distribution_table(distribution)))


def render_variations_csv(variations: WidthVariations) -> str:
    lines = [VARIATIONS_HEADER]
    lines.extend(f"{viewport};{width}" for viewport, width in variations.items())
    return "\n".join(lines) + "\n"


def render_destination(url: str, selector: str, plan: SrcsetPlan) -> str:
    return (
        f"page            : {url}\n"
        f"image selector  : {selector}\n"
        f"widths in srcset: {','.join(str(w) for w in plan)}\n"
        f"srcset waste    : {plan.waste:.2f}px per view\n"
    )


def write_variations_csv(path: Path, variations: WidthVariations) -> None:
    write_text(path, render_variations_csv(variations))
    logger.info("Image width variations saved to CSV file %s", path)


def write_destination(path: Path, url: str, selector: str, plan: SrcsetPlan) -> None:
    write_text(path, render_destination(url, selector, plan))
    logger.info("Data saved to file %s", path)


def build_results(
    url: str,
    selector: str,
    variations: WidthVariations,
    distribution: DemandDistribution,
    plan: SrcsetPlan,
) -> Dict[str, Any]:
    return {
        "generated_at": now_iso(),
        "page": url,
        "selector": selector,
        "viewports": {"min": variations.start, "max": variations.stop},
        "variations": [{"viewport": v, "width": w} for v, w in variations.items()],
        "perfect_widths": {
            "total_views": distribution.total_views,
            "items": [
                {"width": width, "share": share, "views": distribution.views[width]}
                for width, share in distribution.ranked()
            ],
        },
        "srcset": {"widths": list(plan.widths), "waste": plan.waste},
    }


def write_results_json(path: Path, results: Dict[str, Any]) -> None:
    write_json(path, results)
    logger.info("Results saved to JSON file %s", path)
