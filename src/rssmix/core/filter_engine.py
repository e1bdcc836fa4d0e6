"""
Filter engine for include/exclude title patterns of a compilation.

Patterns are regular expressions searched in the item title. The keep rule:

- no include and no exclude patterns: keep
- include patterns and the title matches one: keep (exclude is not consulted)
- exclude patterns and the title matches none: keep
- otherwise: drop

An item matching both an include and an exclude pattern is therefore kept.
"""

import re
from typing import Optional

from rssmix.logger import get_logger

logger = get_logger(__name__)


def parse_patterns(raw: Optional[str], sep: str = ",") -> list[re.Pattern]:
    """Compile a separator-joined pattern string.

    Invalid and empty patterns are dropped one by one; the rest still apply.

    Args:
        raw: Stored column value, e.g. ``"^Python,Rust$"``
        sep: Separator between patterns

    Returns:
        List of compiled patterns
    """
    if not raw:
        return []

    patterns = []
    for pattern in raw.split(sep):
        if not pattern:
            continue
        try:
            patterns.append(re.compile(pattern))
        except re.error as e:
            logger.warning(f"Dropping invalid pattern {pattern!r}: {e}")
    return patterns


class FilterResult:
    """Result of filtering an item."""

    def __init__(
        self,
        passed: bool,
        matched_pattern: Optional[str] = None,
        excluded_by: Optional[str] = None,
    ) -> None:
        """Initialize filter result.

        Args:
            passed: Whether the item is kept
            matched_pattern: Include pattern that kept the item
            excluded_by: Pattern (or reason) that dropped the item
        """
        self.passed = passed
        self.matched_pattern = matched_pattern
        self.excluded_by = excluded_by

    def __repr__(self) -> str:
        return f"<FilterResult(passed={self.passed}, excluded_by={self.excluded_by})>"


class TitleFilter:
    """Applies a compilation's include and exclude patterns to item titles."""

    def __init__(
        self,
        include: Optional[list[re.Pattern]] = None,
        exclude: Optional[list[re.Pattern]] = None,
    ) -> None:
        self.include = include or []
        self.exclude = exclude or []

    @classmethod
    def from_strings(cls, include: Optional[str], exclude: Optional[str]) -> "TitleFilter":
        """Build a filter from the stored comma-joined columns."""
        return cls(parse_patterns(include), parse_patterns(exclude))

    @property
    def is_empty(self) -> bool:
        return not self.include and not self.exclude

    def _first_match(self, patterns: list[re.Pattern], title: str) -> Optional[re.Pattern]:
        for pattern in patterns:
            if pattern.search(title):
                return pattern
        return None

    def filter_title(self, title: Optional[str]) -> FilterResult:
        """Filter one title.

        Args:
            title: Item title

        Returns:
            FilterResult with keep/drop decision
        """
        if self.is_empty:
            return FilterResult(passed=True)

        title = title or ""

        if self.include:
            matched = self._first_match(self.include, title)
            if matched is not None:
                return FilterResult(passed=True, matched_pattern=matched.pattern)

        if self.exclude:
            excluded = self._first_match(self.exclude, title)
            if excluded is None:
                return FilterResult(passed=True)
            return FilterResult(passed=False, excluded_by=excluded.pattern)

        return FilterResult(passed=False, excluded_by="no_include_match")

    def allows(self, title: Optional[str]) -> bool:
        """Whether an item with this title is kept."""
        return self.filter_title(title).passed
