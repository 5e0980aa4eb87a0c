"""Keyword rules for conversation category and needs-human detection.

This is the single copy of these keyword lists. Bump RULES_VERSION whenever a
pattern changes so stored categories can be traced to the rules that set them.
Patterns are lowercase substrings matched against lowercased text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

RULES_VERSION = "2026-02-05"


@dataclass(frozen=True)
class CategoryRule:
    category: str
    patterns: Tuple[str, ...]


# Order matters: first match wins.
CATEGORY_RULES: List[CategoryRule] = [
    CategoryRule("contacts_hours", ("kontakt", "telefon", "email", "mail", "radno vrijeme", "adresa", "ured")),
    CategoryRule("forms_requests", ("obrazac", "zahtjev", "ispuniti", "predati", "pdf", "prilog")),
    CategoryRule(
        "utilities_communal",
        ("komunal", "otpad", "smeće", "rasvjeta", "voda", "kanal", "cesta", "parking"),
    ),
    CategoryRule("budget_finance", ("proračun", "rebalans", "nabava", "izvješće", "financ")),
    CategoryRule("tenders_jobs", ("natječaj", "zapošlj", "posao", "prijava", "oglas")),
    CategoryRule("acts_decisions", ("odluka", "pravilnik", "statut", "sjednica", "vijeće")),
    CategoryRule("permits_solutions", ("dozvola", "rješenje", "građev", "legaliz", "suglasnost")),
    CategoryRule("social_support", ("potpora", "stipend", "socijal", "naknada")),
    CategoryRule("events_news", ("događaj", "manifest", "obavijest", "novost")),
    CategoryRule("issue_reporting", ("prijaviti", "kvar", "problem", "rupa", "ne radi", "curi", "buka")),
]

SPAM_PATTERNS: Tuple[str, ...] = ("kurcina", "jebem", "pizda", "serem", "jebote")
URGENCY_PATTERNS: Tuple[str, ...] = ("hitno", "urgentno", "hitna")


def _normalize(text: str) -> str:
    return (text or "").lower().strip()


def _matches(text: str, patterns: Iterable[str]) -> bool:
    return any(pattern in text for pattern in patterns)


def classify_message(text: str) -> Optional[str]:
    """Return the first matching category, "spam", or None when nothing matches."""
    normalized = _normalize(text)
    if not normalized:
        return None
    if _matches(normalized, SPAM_PATTERNS):
        return "spam"
    for rule in CATEGORY_RULES:
        if _matches(normalized, rule.patterns):
            return rule.category
    return None


def detect_needs_human(texts: Iterable[str]) -> bool:
    """True for issue reports (kvar, problem, ne radi, ...) or urgency words."""
    combined = _normalize(" ".join(texts))
    if not combined or _matches(combined, SPAM_PATTERNS):
        return False

    issue_rule = next(rule for rule in CATEGORY_RULES if rule.category == "issue_reporting")
    if _matches(combined, issue_rule.patterns):
        return True
    return _matches(combined, URGENCY_PATTERNS)
