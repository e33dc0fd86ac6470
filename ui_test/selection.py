"""
Test selection by name and tag.

A filter expression is a comma-separated list of terms and a case is kept when
any term matches it. ``tag:<name>`` matches a case tag exactly; any other term
is a case-insensitive substring of the case id.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .discovery.models import DiscoveryFailure, TestCase, TestSuite

logger = logging.getLogger(__name__)

TAG_PREFIX = "tag:"


@dataclass(frozen=True)
class FilterTerm:
    """One term of a filter expression."""

    value: str
    is_tag: bool = False

    def matches(self, case: TestCase) -> bool:
        if self.is_tag:
            return self.value in case.tags
        return self.value.lower() in case.id.lower()

    def matches_failure(self, failure: DiscoveryFailure) -> bool:
        if self.is_tag:
            return False
        return self.value.lower() in failure.path.lower()


def parse_filter(filter_expr: Optional[str]) -> Tuple[FilterTerm, ...]:
    """Split a filter expression into terms; blank terms are dropped."""
    if not filter_expr:
        return ()

    terms: List[FilterTerm] = []
    for raw in filter_expr.split(","):
        raw = raw.strip()
        if not raw:
            continue
        if raw.lower().startswith(TAG_PREFIX):
            tag = raw[len(TAG_PREFIX):].strip()
            if tag:
                terms.append(FilterTerm(tag, is_tag=True))
        else:
            terms.append(FilterTerm(raw))
    return tuple(terms)


def apply(suite: TestSuite, filter_expr: Optional[str]) -> TestSuite:
    """
    Select the cases matching ``filter_expr``.

    Relative order is preserved and the result never holds more cases than
    ``suite``. A blank expression selects everything.
    """
    terms = parse_filter(filter_expr)
    if not terms:
        return suite

    cases = tuple(case for case in suite.cases if any(t.matches(case) for t in terms))
    failures = tuple(
        failure
        for failure in suite.failures
        if any(t.matches_failure(failure) for t in terms)
    )

    logger.info(
        f"Filter selected {len(cases)} of {len(suite.cases)} test(s)",
        extra={"metadata": {"filter": filter_expr, "terms": len(terms)}},
    )
    return suite.model_copy(update={"cases": cases, "failures": failures})
