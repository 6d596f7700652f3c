"""
Srcset width computation.
Turns measured image widths and visitor contexts into a demand distribution,
then picks the few widths that serve that distribution with the least waste.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from contexts import VisitorRecord
from errors import EmptyDistributionError

logger = logging.getLogger(__name__)

PRODUCT_DECIMALS = 6


@dataclass
class WidthVariations:
    """Rendered image width for every viewport width of a sweep, in viewport order."""

    start: int
    widths: List[int] = field(default_factory=list)

    @property
    def stop(self) -> int:
        return self.start + len(self.widths) - 1

    def append(self, viewport: int, width: int) -> None:
        expected = self.start + len(self.widths)
        if viewport != expected:
            raise ValueError(f"Expected viewport {expected}px, got {viewport}px")
        self.widths.append(width)

    def rendered_width(self, viewport: int) -> int:
        if viewport not in self:
            raise KeyError(viewport)
        return self.widths[viewport - self.start]

    def items(self) -> Iterator[Tuple[int, int]]:
        for offset, width in enumerate(self.widths):
            yield self.start + offset, width

    def viewports(self) -> List[int]:
        return list(range(self.start, self.start + len(self.widths)))

    def __contains__(self, viewport: object) -> bool:
        return isinstance(viewport, int) and self.start <= viewport < self.start + len(self.widths)

    def __len__(self) -> int:
        return len(self.widths)


@dataclass(frozen=True)
class DemandDistribution:
    views: Dict[int, int]
    total_views: int

    @property
    def shares(self) -> Dict[int, float]:
        return {width: count / self.total_views for width, count in sorted(self.views.items())}

    def share(self, width: int) -> float:
        return self.views.get(width, 0) / self.total_views

    def widths(self) -> List[int]:
        return sorted(self.views)

    def ranked(self) -> List[Tuple[int, float]]:
        """(width, share) pairs by decreasing share, smaller width first on ties."""
        return sorted(self.shares.items(), key=lambda item: (-item[1], item[0]))

    def __len__(self) -> int:
        return len(self.views)


@dataclass(frozen=True)
class SrcsetPlan:
    widths: Tuple[int, ...]
    waste: float

    def __iter__(self) -> Iterator[int]:
        return iter(self.widths)

    def __len__(self) -> int:
        return len(self.widths)


def perfect_width(rendered_width: int, density: float) -> int:
    return math.ceil(round(rendered_width * density, PRODUCT_DECIMALS))


def aggregate_perfect_widths(
    variations: WidthVariations,
    records: Iterable[VisitorRecord],
) -> DemandDistribution:
    demand: Dict[int, int] = {}
    total_views = 0
    skipped = 0
    for record in records:
        if record.viewport not in variations:
            skipped += 1
            continue
        width = perfect_width(variations.rendered_width(record.viewport), record.density)
        demand[width] = demand.get(width, 0) + record.views
        total_views += record.views

    if skipped:
        logger.debug("%d contexts outside viewports %d-%d ignored", skipped, variations.start, variations.stop)
    if total_views == 0:
        raise EmptyDistributionError(
            f"No views for viewports {variations.start}px-{variations.stop}px"
        )
    return DemandDistribution(views=demand, total_views=total_views)


def plan_waste(distribution: DemandDistribution, widths: Sequence[int]) -> float:
    """Excess pixels served, weighted by share, when each visitor gets the
    smallest planned width at least as large as their perfect width."""
    candidates = sorted(set(widths))
    if not candidates:
        raise ValueError("Plan has no widths")
    waste = 0.0
    idx = 0
    for demand_width, share in distribution.shares.items():
        if demand_width <= 0:
            continue
        while idx < len(candidates) and candidates[idx] < demand_width:
            idx += 1
        if idx == len(candidates):
            raise ValueError(f"No planned width serves {demand_width}px without upscaling")
        waste += (candidates[idx] - demand_width) * share
    return waste


class _GroupCost:
    """Waste of serving sorted widths[i..j] (inclusive) with widths[j]."""

    def __init__(self, widths: Sequence[int], shares: Sequence[float]):
        self.widths = widths
        self.share_sums = [0.0]
        self.weighted_sums = [0.0]
        for width, share in zip(widths, shares):
            self.share_sums.append(self.share_sums[-1] + share)
            self.weighted_sums.append(self.weighted_sums[-1] + width * share)

    def __call__(self, i: int, j: int) -> float:
        share = self.share_sums[j + 1] - self.share_sums[i]
        weighted = self.weighted_sums[j + 1] - self.weighted_sums[i]
        return max(self.widths[j] * share - weighted, 0.0)


def _fill_layer(
    previous: List[float],
    cost: _GroupCost,
    groups: int,
    size: int,
) -> Tuple[List[float], List[int]]:
    """One DP layer: best[i] covers the first i widths with `groups` groups.

    Split points are monotone in i, so each layer is solved by divide and
    conquer instead of scanning every split for every i.
    """
    best = [math.inf] * (size + 1)
    split = [0] * (size + 1)

    stack = [(groups, size, groups - 1, size - 1)]
    while stack:
        lo, hi, opt_lo, opt_hi = stack.pop()
        if lo > hi:
            continue
        mid = (lo + hi) // 2
        best_cost = math.inf
        best_split = opt_lo
        for j in range(max(opt_lo, groups - 1), min(opt_hi, mid - 1) + 1):
            if previous[j] == math.inf:
                continue
            candidate = previous[j] + cost(j, mid - 1)
            if candidate < best_cost:
                best_cost = candidate
                best_split = j
        best[mid] = best_cost
        split[mid] = best_split
        stack.append((lo, mid - 1, opt_lo, best_split))
        stack.append((mid + 1, hi, best_split, opt_hi))
    return best, split


def select_srcset_widths(distribution: DemandDistribution, count: int) -> SrcsetPlan:
    if count < 1:
        raise ValueError(f"Number of widths must be at least 1, got {count}")

    shares = distribution.shares
    widths = [w for w in shares if w > 0]
    values = [shares[w] for w in widths]
    size = len(widths)
    if size <= count:
        return SrcsetPlan(widths=tuple(widths), waste=0.0)

    cost = _GroupCost(widths, values)
    best = [0.0] + [math.inf] * size
    splits: List[List[int]] = [[]]
    for groups in range(1, count + 1):
        best, split = _fill_layer(best, cost, groups, size)
        splits.append(split)

    chosen: List[int] = []
    end = size
    for groups in range(count, 0, -1):
        chosen.append(widths[end - 1])
        end = splits[groups][end]

    plan = tuple(reversed(chosen))
    logger.debug("Selected %s from %d perfect widths", plan, size)
    return SrcsetPlan(widths=plan, waste=plan_waste(distribution, plan))
