from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path

import pytest

from gst_portal_lookup.models import ExtractionRecord
from gst_portal_lookup.portal.extraction import (
    ExtractionEngine,
    PageSnapshot,
    is_valid_value,
    label_tier,
    line_tier,
    run_tiers,
    table_tier,
)

from fakes import FakePage


RESULT_TABLE_HTML = """
<html><body>
  <nav><table><tr><td>Menu</td><td>Home</td></tr></table></nav>
  <div class="content-pane">
    <table class="table">
      <tr><td>Legal Name of Business</td><td>ACME INDUSTRIES PRIVATE LIMITED</td></tr>
      <tr><td>Trade Name</td><td>N/A</td></tr>
      <tr><td>Principal Place of Business</td><td>12, MG Road, Navi Mumbai, Maharashtra, 400703</td></tr>
      <tr><td>GSTIN / UIN Status</td><td>Active</td></tr>
      <tr><td>Effective Date of registration</td><td>01/07/2017</td></tr>
    </table>
  </div>
</body></html>
"""


@pytest.mark.parametrize(
    "value",
    ["", "   ", "ab", "N/A", "na", "NA", "12345", "--/--", "Click here", "Search", "Menu"],
)
def test_validity_filter_rejects(value: str) -> None:
    assert is_valid_value(value) is False


def test_validity_filter_field_specific_minimums() -> None:
    assert is_valid_value("Tata", "legal_name") is False
    assert is_valid_value("Wipro", "legal_name") is True
    assert is_valid_value("Pune, 4110", "address") is False
    assert is_valid_value("Pune, 41101", "address") is True


def test_validity_filter_matches_boilerplate_on_word_boundaries() -> None:
    # "Navi" starts with "nav" and "Okhla" with "ok"; neither is the whole word
    assert is_valid_value("Sector 5, Navi Mumbai", "address") is True
    assert is_valid_value("Okhla Industrial Area", "address") is True
    assert is_valid_value("see nav bar") is False


def test_table_tier_reads_label_value_rows() -> None:
    out = table_tier(PageSnapshot(html=RESULT_TABLE_HTML), {})
    assert out["legal_name"] == "ACME INDUSTRIES PRIVATE LIMITED"
    assert out["address"] == "12, MG Road, Navi Mumbai, Maharashtra, 400703"
    assert out["status"] == "Active"
    # "N/A" and a letterless date fail the validity filter
    assert out.get("trade_name") is None
    assert out.get("effective_date") is None


def test_table_tier_skips_tables_with_exclusion_keywords() -> None:
    html = """
    <div class="content-pane"><table>
      <tr><td>Legal Name</td><td>Header Holdings Ltd</td></tr>
      <tr><td>Footer</td><td>links</td></tr>
    </table></div>
    """
    assert table_tier(PageSnapshot(html=html), {}).get("legal_name") is None


def test_label_tier_uses_next_sibling_or_parent_text() -> None:
    html = """
    <main>
      <div><strong>Legal Name of Business</strong><span>SHREE GANESH TRADERS</span></div>
      <p><label>Trade Name</label></p>
      <div>Constitution of Business: Proprietorship</div>
      <div><span>Status</span></div>
    </main>
    """
    out = label_tier(PageSnapshot(html=html), {})
    assert out["legal_name"] == "SHREE GANESH TRADERS"
    assert out.get("trade_name") is None
    assert out.get("status") is None


def test_label_tier_parent_text_fallback() -> None:
    html = "<main><div>Active Taxpayer <span>Status</span></div></main>"
    out = label_tier(PageSnapshot(html=html), {})
    assert out["status"] == "Active Taxpayer"


def test_line_tier_takes_next_line_without_filtering() -> None:
    text = "Search Taxpayer\nLegal Name of Business\nNA\nEffective Date of registration\n01/07/2017\n"
    out = line_tier(PageSnapshot(text=text), {})
    assert out["legal_name"] == "NA"
    assert out["effective_date"] == "01/07/2017"


def test_fold_is_first_writer_wins() -> None:
    def tier_a(snapshot, partial):
        return {**partial, "legal_name": "FIRST TIER CO"}

    def tier_b(snapshot, partial):
        # tries to overwrite and also fills a new field
        return {**partial, "legal_name": "SECOND TIER CO", "status": "Active"}

    def tier_c(snapshot, partial):
        return {name: "garbage" for name in partial}

    out = run_tiers(PageSnapshot(), {}, tiers=(tier_a, tier_b, tier_c))
    assert out["legal_name"] == "FIRST TIER CO"
    assert out["status"] == "Active"
    assert out["trade_name"] == "garbage"


def test_fold_keeps_seed_values_and_survives_failing_tier() -> None:
    def boom(snapshot, partial):
        raise RuntimeError("selector exploded")

    def fill(snapshot, partial):
        return {**partial, "legal_name": "OVERWRITE", "address": "1 Some Street, Delhi"}

    out = run_tiers(PageSnapshot(), {"legal_name": "SEEDED LTD"}, tiers=(boom, fill))
    assert out["legal_name"] == "SEEDED LTD"
    assert out["address"] == "1 Some Street, Delhi"


def test_default_tiers_fill_gaps_in_order(tmp_path: Path) -> None:
    text = "Trade Name\nACME\nEffective Date of registration\n01/07/2017\nLegal Name of Business\nWRONG LINE VALUE\n"
    engine = ExtractionEngine(markup_dump_path=str(tmp_path / "dump.html"))
    record = engine.extract_from_snapshot(PageSnapshot(html=RESULT_TABLE_HTML, text=text), identifier="27ABCDE1234F1Z5")

    assert record.legal_name == "ACME INDUSTRIES PRIVATE LIMITED"  # tier 1 beats tier 3
    assert record.trade_name == "ACME"  # only tier 3 had it
    assert record.effective_date == "01/07/2017"
    assert record.effective_on == date(2017, 7, 1)
    assert record.gstin == "27ABCDE1234F1Z5"
    assert record.source == "dom"
    assert engine.last_dump is None
    assert not (tmp_path / "dump.html").exists()


def test_empty_page_dumps_markup_once(tmp_path: Path) -> None:
    dump = tmp_path / "debug" / "debug-page.html"
    engine = ExtractionEngine(markup_dump_path=str(dump))
    page = FakePage(html="<html><body><p>Nothing here</p></body></html>", text="Nothing here")

    record = asyncio.run(engine.extract(page, identifier="27ABCDE1234F1Z5"))

    assert not record.has_target_fields()
    assert engine.last_dump == dump
    assert dump.read_text(encoding="utf-8").startswith("<html>")
    assert list(dump.parent.iterdir()) == [dump]


def test_extract_keeps_base_record_values(tmp_path: Path) -> None:
    engine = ExtractionEngine(markup_dump_path=str(tmp_path / "dump.html"))
    base = ExtractionRecord(gstin="27ABCDE1234F1Z5", legal_name="FROM API LTD", constitution="Company")
    record = engine.extract_from_snapshot(PageSnapshot(html=RESULT_TABLE_HTML), base=base)

    assert record.legal_name == "FROM API LTD"
    assert record.constitution == "Company"
    assert record.address == "12, MG Road, Navi Mumbai, Maharashtra, 400703"
    assert record.source == "dom"
