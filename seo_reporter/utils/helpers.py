"""
Utility helpers for the SEO Rank Reporter.

Domain matching, ranking trend arithmetic and small date helpers shared by
the ranking updater and the report renderer.
"""

import re
import datetime
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlparse

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://")
_PREFIX_RE = re.compile(r"^(https?://)?(www\.)?")

TREND_UP = "up"
TREND_DOWN = "down"
TREND_FLAT = "flat"


@dataclass(frozen=True)
class Trend:
    """Direction of a ranking change.

    ``change`` is ``previous - current``; rank 1 is best, so a positive
    change is an improvement. ``change`` is *None* when either side is
    unknown.
    """

    direction: str
    change: Optional[int]

    @property
    def known(self) -> bool:
        return self.change is not None


# ---------------------------------------------------------------------------
# Domain matching
# ---------------------------------------------------------------------------

def normalize_domain(url: str) -> str:
    """Reduce a website URL to a comparable host name.

    A missing or scheme-relative (``//host``) scheme is treated as
    ``https://`` and a leading ``www.`` is dropped. Never raises: when the
    URL cannot be parsed the scheme and ``www.`` prefix are stripped
    textually and the first path segment is returned.
    """
    raw = (url or "").strip().lower()
    if raw.startswith("//"):
        raw = raw[2:]
    try:
        candidate = raw if _SCHEME_RE.match(raw) else f"https://{raw}"
        host = urlparse(candidate).hostname
        if not host:
            raise ValueError(f"no host in {url!r}")
    except ValueError:
        return _PREFIX_RE.sub("", raw).split("/")[0]
    return host[4:] if host.startswith("www.") else host


def is_same_domain(candidate_url: str, target_domain: str) -> bool:
    """Return True when *candidate_url* belongs to *target_domain*.

    This is a lenient heuristic, not an exact match: either domain being a
    substring of the other counts, so ``blog.example.com`` matches
    ``example.com`` (and so would ``notexample.com``).
    """
    candidate = normalize_domain(candidate_url)
    target = (target_domain or "").strip().lower()
    if not candidate or not target:
        return False
    return target in candidate or candidate in target


# ---------------------------------------------------------------------------
# Ranking trends
# ---------------------------------------------------------------------------

def ranking_trend(current: Optional[int], previous: Optional[int]) -> Trend:
    """Classify the move from *previous* to *current* ranking."""
    if current is None or previous is None:
        return Trend(TREND_FLAT, None)
    change = previous - current  # positive means improved
    if change > 0:
        return Trend(TREND_UP, change)
    if change < 0:
        return Trend(TREND_DOWN, change)
    return Trend(TREND_FLAT, 0)


def window_trend(rankings: Iterable[Optional[int]]) -> Trend:
    """First-vs-last trend over rankings ordered oldest to newest.

    Unranked observations (``None``) are skipped.
    """
    ranked = [r for r in rankings if r is not None]
    if not ranked:
        return Trend(TREND_FLAT, None)
    return ranking_trend(ranked[-1], ranked[0])


def format_ranking_change(current: Optional[int], previous: Optional[int]) -> str:
    """Format a ranking change for display."""
    if previous is None or current is None:
        return "NEW" if current else "N/A"
    diff = previous - current  # positive means improved
    if diff > 0:
        return f"▲{diff}"
    elif diff < 0:
        return f"▼{abs(diff)}"
    return "—"


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, matching how timestamps are stored."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
