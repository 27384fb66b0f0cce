"""Semantic versions and range expressions.

Ranges use the npm grammar that bundle authors already write in
dependency declarations::

    "5.7.x"            x-range
    "^1.2.0"           caret: compatible with 1.x
    "~1.2.0"           tilde: patch-level changes
    ">=1.0.0 <2.0.0"   comparator set (AND)
    "1.2.3 - 1.4.0"    hyphen range
    "1.x || 2.1.x"     alternatives (OR)

Prerelease candidates are filtered by the caller's ``allow_prereleases``
flag before any comparator is consulted; when allowed, they compare by
normal semver precedence. Wildcard lower bounds are therefore expanded to
``-0`` (the lowest prerelease) so that ``5.7.0-beta`` falls inside ``5.7.x``.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass

_VERSION_RE = re.compile(
    r"^v?(\d+)\.(\d+)\.(\d+)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
_PARTIAL_RE = re.compile(
    r"^v?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)
_COMPARATOR_RE = re.compile(r"^(<=|>=|<|>|=|~>|~|\^)?(.*)$")
_HYPHEN_RE = re.compile(r"^(\S+)\s+-\s+(\S+)$")
_OPERATOR_SPACE_RE = re.compile(r"(<=|>=|<|>|=|~>|~|\^)\s+")


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """A semantic version. Build metadata is kept but ignored for ordering."""

    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    build: str | None = None

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def _key(self) -> tuple:
        if not self.prerelease:
            pre: tuple = (1,)
        else:
            pre = (
                0,
                tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in self.prerelease),
            )
        return (self.major, self.minor, self.patch, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + self.build
        return text


def parse_version(text: str) -> Version:
    """Parse a full semantic version (an optional leading ``v`` is accepted).

    Raises:
        ValueError: If ``text`` is not a valid semantic version.
    """
    match = _VERSION_RE.match(str(text or "").strip())
    if not match:
        raise ValueError(f"invalid semantic version: {text!r}")
    major, minor, patch, pre, build = match.groups()
    return Version(
        int(major),
        int(minor),
        int(patch),
        tuple(pre.split(".")) if pre else (),
        build,
    )


def is_valid_version(text: str) -> bool:
    try:
        parse_version(text)
    except ValueError:
        return False
    return True


# =============================================================================
# Ranges
# =============================================================================

Comparator = tuple[str, Version]

_FLOOR = ("0",)  # lowest possible prerelease


@dataclass(frozen=True)
class _Partial:
    major: int | None
    minor: int | None
    patch: int | None
    prerelease: tuple[str, ...] = ()

    @property
    def is_full(self) -> bool:
        return self.patch is not None

    def floor(self) -> Version:
        """Lowest version matched by this partial."""
        if self.is_full:
            return Version(self.major or 0, self.minor or 0, self.patch or 0, self.prerelease)
        return Version(self.major or 0, self.minor or 0, 0, _FLOOR)

    def ceiling(self) -> Version:
        """Exclusive upper bound for a partial (minor or major bump)."""
        if self.minor is None:
            return Version((self.major or 0) + 1, 0, 0, _FLOOR)
        return Version(self.major or 0, self.minor + 1, 0, _FLOOR)


def _parse_partial(text: str) -> _Partial:
    match = _PARTIAL_RE.match(text)
    if not match:
        raise ValueError(f"invalid version in range: {text!r}")
    parts: list[int | None] = []
    for raw in match.groups()[:3]:
        if raw is None or raw in ("x", "X", "*"):
            parts.append(None)
        else:
            parts.append(int(raw))
    # a wildcard makes every later component a wildcard too: 1.x.3 == 1.x
    for i, value in enumerate(parts):
        if value is None:
            parts[i:] = [None] * (3 - i)
            break
    pre = match.group(4)
    return _Partial(parts[0], parts[1], parts[2], tuple(pre.split(".")) if pre and parts[2] is not None else ())


def _any() -> list[Comparator]:
    return [(">=", Version(0, 0, 0, _FLOOR))]


def _desugar_tilde(p: _Partial) -> list[Comparator]:
    if p.major is None:
        return _any()
    if p.minor is None:
        return [(">=", p.floor()), ("<", Version(p.major + 1, 0, 0, _FLOOR))]
    return [(">=", p.floor()), ("<", Version(p.major, p.minor + 1, 0, _FLOOR))]


def _desugar_caret(p: _Partial) -> list[Comparator]:
    if p.major is None:
        return _any()
    if p.major > 0 or p.minor is None:
        upper = Version(p.major + 1, 0, 0, _FLOOR)
    elif p.minor > 0 or p.patch is None:
        upper = Version(0, p.minor + 1, 0, _FLOOR)
    else:
        upper = Version(0, 0, p.patch + 1, _FLOOR)
    return [(">=", p.floor()), ("<", upper)]


def _desugar(op: str, p: _Partial) -> list[Comparator]:
    if op in ("~", "~>"):
        return _desugar_tilde(p)
    if op == "^":
        return _desugar_caret(p)
    if p.major is None:
        # "*", ">=*", "<*" etc. match everything or nothing; npm treats "<*" as nothing
        return [("<", Version(0, 0, 0, _FLOOR))] if op in ("<", ">") else _any()
    if op in ("", "="):
        if p.is_full:
            return [("=", p.floor())]
        return [(">=", p.floor()), ("<", p.ceiling())]
    if op == ">":
        return [(">", p.floor())] if p.is_full else [(">=", p.ceiling())]
    if op == ">=":
        return [(">=", p.floor())]
    if op == "<":
        return [("<", p.floor())]
    if op == "<=":
        return [("<=", p.floor())] if p.is_full else [("<", p.ceiling())]
    raise ValueError(f"unknown range operator: {op!r}")


def _parse_set(text: str) -> list[Comparator]:
    hyphen = _HYPHEN_RE.match(text)
    if hyphen:
        low = _parse_partial(hyphen.group(1))
        high = _parse_partial(hyphen.group(2))
        upper: Comparator = ("<=", high.floor()) if high.is_full else ("<", high.ceiling())
        return [(">=", low.floor()), upper]

    normalized = _OPERATOR_SPACE_RE.sub(r"\1", text)
    comparators: list[Comparator] = []
    for token in normalized.split():
        match = _COMPARATOR_RE.match(token)
        op, rest = match.group(1) or "", match.group(2)  # type: ignore[union-attr]
        if not rest:
            raise ValueError(f"missing version after {op!r}")
        comparators.extend(_desugar(op, _parse_partial(rest)))
    return comparators or _any()


@functools.lru_cache(maxsize=256)
def parse_range(expression: str) -> tuple[tuple[Comparator, ...], ...]:
    """Parse a range expression into OR-ed sets of AND-ed comparators.

    Raises:
        ValueError: If the expression is malformed.
    """
    alternatives = str(expression or "").split("||")
    return tuple(tuple(_parse_set(alt.strip())) for alt in alternatives)


def _compare(op: str, candidate: Version, bound: Version) -> bool:
    if op == "=":
        return candidate == bound
    if op == ">":
        return candidate > bound
    if op == ">=":
        return candidate >= bound
    if op == "<":
        return candidate < bound
    return candidate <= bound


def satisfies(
    candidate: str | Version,
    expression: str,
    *,
    allow_prereleases: bool = False,
) -> bool:
    """Check whether ``candidate`` falls inside the range ``expression``.

    Raises:
        ValueError: If the candidate or the expression is malformed.
    """
    version = candidate if isinstance(candidate, Version) else parse_version(candidate)
    if version.is_prerelease and not allow_prereleases:
        return False
    return any(
        all(_compare(op, version, bound) for op, bound in comparator_set)
        for comparator_set in parse_range(expression)
    )
