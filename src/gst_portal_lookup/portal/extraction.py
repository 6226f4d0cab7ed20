from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from bs4 import BeautifulSoup

from ..models import TARGET_FIELDS, ExtractionRecord
from ..util.dates import parse_portal_date
from ..util.diagnostics import dump_markup
from .selectors import PortalSelectors


logger = logging.getLogger(__name__)


MIN_VALUE_LENGTH = 5
FIELD_MIN_LENGTH = {"address": 11, "effective_date": 6}
NULL_PLACEHOLDERS = frozenset({"n/a", "na"})
BOILERPLATE_WORDS: tuple[str, ...] = (
    "menu",
    "navigation",
    "header",
    "footer",
    "sidebar",
    "nav",
    "button",
    "link",
    "click",
    "ok",
    "cancel",
    "submit",
    "search",
    "gst law",
    "amendment",
)
DOMAIN_KEYWORDS: tuple[str, ...] = ("legal", "trade", "address", "status", "effective date")
EXCLUSION_KEYWORDS: tuple[str, ...] = ("menu", "navigation", "header", "footer")
LABEL_ELEMENTS: tuple[str, ...] = ("div", "span", "p", "td", "th", "label", "strong", "li", "dt")
MAX_LABEL_LENGTH = 80


@dataclass(frozen=True)
class FieldRule:
    name: str
    # A label matches when every word of any one group appears in it.
    labels: tuple[tuple[str, ...], ...]
    # Substrings for the last-resort line pairing.
    line_phrases: tuple[str, ...]


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule("legal_name", (("legal", "name"),), ("legal name",)),
    FieldRule("trade_name", (("trade", "name"),), ("trade name",)),
    FieldRule(
        "address",
        (("address",), ("principal", "place"), ("place", "business")),
        ("address", "principal place"),
    ),
    FieldRule(
        "effective_date",
        (("effective", "date"), ("date", "registration")),
        ("effective date", "date of registration"),
    ),
    FieldRule("status", (("status",),), ("status",)),
)
FIELDS: tuple[str, ...] = tuple(r.name for r in FIELD_RULES)

Partial = dict[str, Optional[str]]
Tier = Callable[["PageSnapshot", Mapping[str, Optional[str]]], Partial]


@dataclass(frozen=True)
class PageSnapshot:
    html: str = ""
    text: str = ""

    def soup(self) -> BeautifulSoup:
        return BeautifulSoup(self.html or "", "html.parser")


def _squash(text: str) -> str:
    return " ".join((text or "").split())


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"(?<![a-z]){re.escape(word)}(?![a-z])", text) is not None


def _label_matches(rule: FieldRule, label: str) -> bool:
    return any(all(_has_word(label, w) for w in group) for group in rule.labels)


def is_valid_value(value: Optional[str], field: Optional[str] = None) -> bool:
    """
    Reject obvious non-values: empty, too short, "n/a", navigation boilerplate, or no letters at all.
    """
    v = _squash(value or "")
    if not v:
        return False
    if len(v) < FIELD_MIN_LENGTH.get(field or "", MIN_VALUE_LENGTH):
        return False
    lower = v.lower()
    if lower in NULL_PLACEHOLDERS:
        return False
    if any(_has_word(lower, w) for w in BOILERPLATE_WORDS):
        return False
    if not re.search(r"[a-z]", lower):
        return False
    return True


def _unset(partial: Mapping[str, Optional[str]]) -> list[FieldRule]:
    return [r for r in FIELD_RULES if not partial.get(r.name)]


def _region(soup: BeautifulSoup, selector: str) -> Any:
    try:
        found = soup.select_one(selector)
    except Exception:
        found = None
    return found or soup.body or soup


def table_tier(
    snapshot: PageSnapshot,
    partial: Mapping[str, Optional[str]],
    *,
    selectors: Optional[PortalSelectors] = None,
) -> Partial:
    """Label/value rows of result tables inside the content region."""
    sel = selectors or PortalSelectors()
    out: Partial = dict(partial)
    if not _unset(out):
        return out

    region = _region(snapshot.soup(), sel.table_region)
    for table in region.find_all("table"):
        table_text = _squash(table.get_text(" ")).lower()
        if not any(k in table_text for k in DOMAIN_KEYWORDS):
            continue
        if any(_has_word(table_text, k) for k in EXCLUSION_KEYWORDS):
            continue

        found = 0
        for row in table.find_all("tr"):
            cells = row.find_all(["td", "th"], recursive=False)
            if len(cells) < 2:
                continue
            label = _squash(cells[0].get_text(" ")).lower()
            value = _squash(cells[1].get_text(" "))
            for rule in _unset(out):
                if _label_matches(rule, label) and is_valid_value(value, rule.name):
                    out[rule.name] = value
                    found += 1
                    break
        if found:
            logger.debug("Found %d data fields in table", found)
    return out


def _own_text(el: Any) -> str:
    return _squash(" ".join(str(s) for s in el.find_all(string=True, recursive=False)))


def label_tier(
    snapshot: PageSnapshot,
    partial: Mapping[str, Optional[str]],
    *,
    selectors: Optional[PortalSelectors] = None,
) -> Partial:
    """Elements whose own text is a field label; value from the next sibling or the parent's remaining text."""
    sel = selectors or PortalSelectors()
    out: Partial = dict(partial)
    if not _unset(out):
        return out

    region = _region(snapshot.soup(), sel.label_region)
    for el in region.find_all(LABEL_ELEMENTS):
        own = _own_text(el)
        if not own or len(own) > MAX_LABEL_LENGTH:
            continue
        label = own.lower()
        for rule in _unset(out):
            if not _label_matches(rule, label):
                continue
            sibling = el.find_next_sibling()
            if sibling is not None:
                value = _squash(sibling.get_text(" "))
            elif el.parent is not None:
                value = _squash(el.parent.get_text(" ").replace(el.get_text(" "), " ", 1))
            else:
                value = ""
            if is_valid_value(value, rule.name):
                out[rule.name] = value
            break
    return out


def line_tier(snapshot: PageSnapshot, partial: Mapping[str, Optional[str]]) -> Partial:
    """Last resort: the line after a label line, taken verbatim (no validity filter)."""
    out: Partial = dict(partial)
    lines = [ln.strip() for ln in (snapshot.text or "").splitlines() if ln.strip()]
    for i, line in enumerate(lines[:-1]):
        lower = line.lower()
        for rule in _unset(out):
            if any(p in lower for p in rule.line_phrases):
                out[rule.name] = lines[i + 1]
                break
    return out


DEFAULT_TIERS: tuple[Tier, ...] = (table_tier, label_tier, line_tier)


def run_tiers(
    snapshot: PageSnapshot,
    partial: Optional[Mapping[str, Optional[str]]] = None,
    *,
    tiers: Iterable[Tier] = DEFAULT_TIERS,
) -> Partial:
    """
    Fold the tiers over a partial record. A field set by an earlier tier is never replaced by a later one,
    whatever the later tier returns. A tier that raises simply contributes nothing.
    """
    result: Partial = {name: None for name in FIELDS}
    for name, value in (partial or {}).items():
        if name in result and value:
            result[name] = value

    for tier in tiers:
        if not _unset(result):
            break
        name = getattr(tier, "__name__", repr(tier))
        try:
            proposed = tier(snapshot, dict(result))
        except Exception:
            logger.debug("Extraction tier %s failed; continuing.", name, exc_info=True)
            continue
        for field in FIELDS:
            if not result[field] and proposed.get(field):
                result[field] = proposed[field]
    return result


class ExtractionEngine:
    """Reads business details out of the rendered result page when no API payload is usable."""

    def __init__(
        self,
        *,
        selectors: Optional[PortalSelectors] = None,
        markup_dump_path: str = "data/debug/debug-page.html",
    ) -> None:
        self.selectors = selectors or PortalSelectors()
        self.markup_dump_path = markup_dump_path
        self.last_dump: Optional[Path] = None

    async def snapshot(self, page: Any) -> PageSnapshot:
        html = ""
        text = ""
        try:
            html = await page.content()
        except Exception:
            logger.debug("Could not read page markup.", exc_info=True)
        try:
            text = await page.inner_text("body")
        except Exception:
            logger.debug("Could not read page text.", exc_info=True)
        return PageSnapshot(html=html or "", text=text or "")

    async def extract(
        self,
        page: Any,
        *,
        identifier: Optional[str] = None,
        base: Optional[ExtractionRecord] = None,
    ) -> ExtractionRecord:
        return self.extract_from_snapshot(await self.snapshot(page), identifier=identifier, base=base)

    def extract_from_snapshot(
        self,
        snapshot: PageSnapshot,
        *,
        identifier: Optional[str] = None,
        base: Optional[ExtractionRecord] = None,
    ) -> ExtractionRecord:
        start: Partial = {name: getattr(base, name) if base else None for name in FIELDS}
        tiers: tuple[Tier, ...] = (
            functools.partial(table_tier, selectors=self.selectors),
            functools.partial(label_tier, selectors=self.selectors),
            line_tier,
        )
        result = run_tiers(snapshot, start, tiers=tiers)

        self.last_dump = None
        if not any(result[name] for name in TARGET_FIELDS):
            self.last_dump = dump_markup(snapshot.html, self.markup_dump_path)
            if self.last_dump is not None:
                logger.warning("Could not extract data. HTML saved to %s for inspection.", self.last_dump)

        update: dict[str, Any] = dict(result)
        update["effective_on"] = parse_portal_date(result.get("effective_date"))
        if any(result[n] and result[n] != start[n] for n in FIELDS):
            update["source"] = "dom"
        record = base or ExtractionRecord(gstin=identifier, source="dom")
        if not record.gstin and identifier:
            update["gstin"] = identifier
        return record.model_copy(update=update)
