"""
Version comparator for SchemaBridge.

Version identifiers follow Kubernetes-style naming: ``v<major>`` optionally
followed by ``alpha<stage>`` or ``beta<stage>`` (``v1``, ``v2beta1``,
``v3alpha2``). Priority is decided, highest precedence first, by:

1. stability tier: stable > beta > alpha
2. major number, compared numerically (``v10`` > ``v2``)
3. stage number within the tier (``v2alpha2`` > ``v2alpha1``)

Identifiers that do not match the pattern are lower priority than every
well-formed identifier and are ordered alphabetically among themselves, so a
priority-sorted list reads::

    v10, v2, v1, v11beta2, v10beta3, v3beta1, v12alpha1, v11alpha2, foo1, foo10

Invariants:
    - compare() never raises, whatever the input strings
    - compare(a, b) is EQUAL iff a == b
    - Parsing is memoised; hot-path comparisons reuse cached Version objects

How to change safely:
    - Adding a new tier requires a new _TIER_RANK entry and a regex update
    - Never change the relative order of existing tiers; migration ordering
      and edge direction depend on it
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, List, Optional, Tuple

_VERSION_RE = re.compile(r"^v([1-9][0-9]*)(?:(alpha|beta)([1-9][0-9]*))?$")

_TIER_RANK = {"alpha": 0, "beta": 1, None: 2}


class Ordering(IntEnum):
    """Result of comparing two version identifiers by priority."""

    LESS = -1
    EQUAL = 0
    GREATER = 1


@dataclass(frozen=True)
class Version:
    """A parsed version identifier.

    Attributes:
        name: The original identifier string
        major: Numeric major component (None if malformed)
        tier: Stability suffix: "alpha", "beta" or None for stable
        stage: Numeric stage of the alpha/beta suffix (0 for stable)
        well_formed: Whether the identifier matched the expected pattern
        sort_key: Ascending sort key; smaller keys mean higher priority
    """

    name: str
    major: Optional[int]
    tier: Optional[str]
    stage: int
    well_formed: bool
    sort_key: Tuple = field(repr=False, compare=False)

    @property
    def is_stable(self) -> bool:
        return self.well_formed and self.tier is None

    def __str__(self) -> str:
        return self.name


@functools.lru_cache(maxsize=4096)
def parse_version(name: str) -> Version:
    """Parse a version identifier. Never raises; malformed input is flagged."""
    match = _VERSION_RE.match(name)
    if match is None:
        return Version(
            name=name,
            major=None,
            tier=None,
            stage=0,
            well_formed=False,
            sort_key=(1, 0, 0, 0, name),
        )
    major_str, tier, stage_str = match.groups()
    major = int(major_str)
    stage = int(stage_str) if stage_str else 0
    return Version(
        name=name,
        major=major,
        tier=tier,
        stage=stage,
        well_formed=True,
        sort_key=(0, -_TIER_RANK[tier], -major, -stage, ""),
    )


def version_key(name: str) -> Tuple:
    """Sort key placing the highest-priority version first."""
    return parse_version(name).sort_key


def compare(a: str, b: str) -> Ordering:
    """Compare two version identifiers by priority.

    Returns:
        GREATER if ``a`` has higher priority than ``b``, LESS if lower,
        EQUAL if the identifiers are identical.

    Example:
        >>> compare("v10", "v2")
        <Ordering.GREATER: 1>
        >>> compare("v2alpha1", "v2alpha2")
        <Ordering.LESS: -1>
    """
    if a == b:
        return Ordering.EQUAL
    ka = version_key(a)
    kb = version_key(b)
    if ka < kb:
        return Ordering.GREATER
    if ka > kb:
        return Ordering.LESS
    # Keys only tie for identical strings; kept for totality.
    return Ordering.GREATER if a < b else Ordering.LESS


def sort_versions(names: Iterable[str]) -> List[str]:
    """Return the identifiers sorted highest priority first."""
    return sorted(names, key=version_key)


def is_newer(a: str, b: str) -> bool:
    """Whether ``a`` has higher priority than ``b``."""
    return compare(a, b) is Ordering.GREATER
