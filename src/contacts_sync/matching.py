from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from .models import Contact
from .normalization import digits_only, has_cjk

logger = logging.getLogger(__name__)

STRONG = "strong"
WEAK = "weak"

RULE_EMAIL = "email"
RULE_PHONE = "phone"
RULE_NAME_EXACT = "name_exact"
RULE_NAME_CONTAINS = "name_contains"
RULE_CROSS_SCRIPT = "cross_script_role"

RULE_CONFIDENCE = {
    RULE_EMAIL: STRONG,
    RULE_PHONE: STRONG,
    RULE_NAME_EXACT: STRONG,
    RULE_NAME_CONTAINS: WEAK,
    RULE_CROSS_SCRIPT: WEAK,
}

MIN_PHONE_DIGITS = 8


@dataclass(frozen=True)
class DuplicateMatch:
    contact: Contact
    rule: str

    @property
    def confidence(self) -> str:
        return RULE_CONFIDENCE[self.rule]

    @property
    def is_strong(self) -> bool:
        return self.confidence == STRONG


def match_rule(candidate: Contact, existing: Contact) -> Optional[str]:
    """Name of the first identity rule linking the two records, if any."""
    if candidate.email and existing.email and candidate.email.lower() == existing.email.lower():
        return RULE_EMAIL

    if candidate.phone and existing.phone:
        p1 = digits_only(candidate.phone)
        p2 = digits_only(existing.phone)
        if len(p1) >= MIN_PHONE_DIGITS and p1 == p2:
            return RULE_PHONE

    if candidate.name and existing.name:
        n1 = candidate.name.strip().lower()
        n2 = existing.name.strip().lower()
        if n1 and n1 == n2:
            return RULE_NAME_EXACT
        if len(n1) > 1 and len(n2) > 1 and (n1 in n2 or n2 in n1):
            return RULE_NAME_CONTAINS

    if (
        candidate.company
        and candidate.title
        and candidate.company == existing.company
        and candidate.title == existing.title
        and has_cjk(candidate.name) != has_cjk(existing.name)
    ):
        return RULE_CROSS_SCRIPT

    return None


class DuplicateMatcher:
    """Over-matching identity heuristic for interactive writes.

    Rules are evaluated per existing record in order; the first record for
    which any rule fires is the match.
    """

    def matches(
        self, candidate: Contact, existing: Iterable[Contact], exclude_id: str = ""
    ) -> Iterator[DuplicateMatch]:
        for other in existing:
            if exclude_id and other.id == exclude_id:
                continue
            rule = match_rule(candidate, other)
            if rule:
                yield DuplicateMatch(contact=other, rule=rule)

    def match(
        self, candidate: Contact, existing: Iterable[Contact], exclude_id: str = ""
    ) -> Optional[DuplicateMatch]:
        found = self.matches(candidate, existing, exclude_id=exclude_id)
        first = next(found, None)
        if first is None:
            return None
        logger.debug(
            "Duplicate for %r: %s (%s via %s)",
            candidate.name,
            first.contact.id,
            first.contact.name,
            first.rule,
        )
        second = next(found, None)
        if second is not None:
            logger.info(
                "Ambiguous duplicate for %r: %s and %s both match; using the first",
                candidate.name,
                first.contact.id,
                second.contact.id,
            )
        return first

    def find(
        self, candidate: Contact, existing: Iterable[Contact], exclude_id: str = ""
    ) -> Optional[Contact]:
        result = self.match(candidate, existing, exclude_id=exclude_id)
        return result.contact if result else None


def find_duplicate(candidate: Contact, existing: Iterable[Contact]) -> Optional[Contact]:
    return DuplicateMatcher().find(candidate, existing)


__all__ = [
    "DuplicateMatch",
    "DuplicateMatcher",
    "STRONG",
    "WEAK",
    "find_duplicate",
    "match_rule",
]
