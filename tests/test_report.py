"""
Report Tests
============

Console tables and the files written for each run.
"""

import json

import pytest

from errors import WriteError
from report import (
    build_results,
    build_table,
    distribution_table,
    render_destination,
    render_table,
    render_variations_csv,
    variations_table,
    write_results_json,
    write_text,
)
from widths import DemandDistribution, SrcsetPlan, WidthVariations


@pytest.fixture
def variations():
    return WidthVariations(start=300, widths=[300, 301, 302])


@pytest.fixture
def distribution():
    return DemandDistribution(views={300: 10, 602: 5}, total_views=15)


class TestTables:
    def test_columns_are_right_aligned(self):
        table = build_table(["viewport width", "image width"], [["300px", "150px"], ["1440px", "720px"]])
        lines = render_table(table).splitlines()
        short = next(line for line in lines if "300px" in line)
        wide = next(line for line in lines if "1440px" in line)

        assert [column.justify for column in table.columns] == ["right", "right"]
        header = next(line for line in lines if "viewport width" in line)
        assert lines.index(header) < lines.index(short)
        assert short.index("300px") + len("300px") == wide.index("1440px") + len("1440px")
        assert short.index("150px") == wide.index("720px")

    def test_distribution_table_percentages(self, distribution):
        text = render_table(distribution_table(distribution))

        assert "66.67 %" in text
        assert "33.33 %" in text
        assert text.index("300px") < text.index("602px")

    def test_variations_table_rows(self, variations):
        table = variations_table(variations)

        assert table.row_count == 3
        assert "302px" in render_table(table)


class TestFiles:
    def test_variations_csv(self, variations):
        assert render_variations_csv(variations) == (
            "viewport width (px);image width (px)\n300;300\n301;301\n302;302\n"
        )

    def test_destination(self):
        text = render_destination("https://example.com", "img.hero", SrcsetPlan(widths=(320, 640), waste=12.5))

        assert "page            : https://example.com" in text
        assert "image selector  : img.hero" in text
        assert "widths in srcset: 320,640" in text
        assert "12.50px per view" in text

    def test_results_json(self, tmp_path, variations, distribution):
        plan = SrcsetPlan(widths=(602,), waste=201.33)
        path = tmp_path / "nested" / "results.json"
        write_results_json(path, build_results("https://example.com", "img", variations, distribution, plan))
        data = json.loads(path.read_text(encoding="utf-8"))

        assert data["viewports"] == {"min": 300, "max": 302}
        assert data["srcset"]["widths"] == [602]
        assert [item["width"] for item in data["perfect_widths"]["items"]] == [300, 602]
        assert data["perfect_widths"]["total_views"] == 15

    def test_write_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        with pytest.raises(WriteError) as info:
            write_text(blocker / "out.txt", "data")

        assert info.value.path == blocker / "out.txt"
