"""
Scope patterns: hierarchical path globs.

Syntax:
    **      zero or more whole path segments
    *       any run of characters inside one segment (so a bare `*` is
            exactly one segment)
    ?       one character inside a segment
    [abc]   character class inside a segment

Two questions are answered here:
    matches(pattern, path)   does the pattern match this concrete path?
    overlaps(a, b)           is there any path both patterns match?

overlaps() never enumerates paths. It walks the two patterns as a product
automaton, first over segments and then, for a pair of segment globs, over
characters. Character classes are treated as "any character" when
comparing two globs, which can only turn a "no" into a "yes": false
positives are acceptable, false negatives are not.
"""

from fnmatch import fnmatchcase
from functools import lru_cache
from typing import Callable, Iterable, Sequence

GLOBSTAR = "**"

_STAR = "*"
_ANY = "?"


class PatternError(ValueError):
    """Malformed scope pattern."""

    def __init__(self, pattern: str, problem: str):
        self.pattern = pattern
        self.problem = problem
        super().__init__(f"Invalid pattern '{pattern}': {problem}")


def normalize_pattern(pattern: str) -> str:
    """Strip a leading './' and turn a trailing '/' into '/**'."""
    while pattern.startswith("./"):
        pattern = pattern[2:]
    if pattern.endswith("/") and len(pattern) > 1:
        pattern = pattern.rstrip("/") + "/" + GLOBSTAR
    return pattern


def validate_pattern(pattern: str) -> str:
    """Check pattern syntax, returning the normalized pattern.

    Raises:
        PatternError: empty, absolute, empty segment, '..', a '**' glued to
            other characters, or an unclosed character class
    """
    if not isinstance(pattern, str) or not pattern.strip():
        raise PatternError(str(pattern), "empty pattern")

    normalized = normalize_pattern(pattern.strip())
    if normalized.startswith("/"):
        raise PatternError(pattern, "patterns are relative to the project root")

    for segment in normalized.split("/"):
        if segment == "":
            raise PatternError(pattern, "empty path segment")
        if segment == "..":
            raise PatternError(pattern, "'..' segments are not allowed")
        if GLOBSTAR in segment and segment != GLOBSTAR:
            raise PatternError(pattern, f"'**' must be a whole segment, got '{segment}'")
        if _unclosed_class(segment):
            raise PatternError(pattern, f"unclosed '[' in '{segment}'")

    return normalized


def _class_end(segment: str, start: int) -> int:
    """Index of the ']' closing the class opened at `start`, or -1.

    As in fnmatch, a ']' right after '[' or '[!' is a member, not the end.
    """
    j = start + 1
    if j < len(segment) and segment[j] == "!":
        j += 1
    if j < len(segment) and segment[j] == "]":
        j += 1
    return segment.find("]", j)


def _unclosed_class(segment: str) -> bool:
    i = 0
    while i < len(segment):
        if segment[i] == "[":
            end = _class_end(segment, i)
            if end == -1:
                return True
            i = end
        i += 1
    return False


def split_path(path: str) -> list[str]:
    """Split a concrete relative path into segments ('./', '//' and '\\' tolerated)."""
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return [seg for seg in path.split("/") if seg and seg != "."]


def matches(pattern: str, path: str) -> bool:
    """True if the pattern matches the concrete path."""
    if not pattern or not path:
        return False

    pat = normalize_pattern(pattern).split("/")
    segs = split_path(path)

    @lru_cache(maxsize=None)
    def walk(i: int, j: int) -> bool:
        if i == len(pat):
            return j == len(segs)
        if pat[i] == GLOBSTAR:
            # zero segments, or swallow one and stay on the globstar
            return walk(i + 1, j) or (j < len(segs) and walk(i, j + 1))
        return j < len(segs) and fnmatchcase(segs[j], pat[i]) and walk(i + 1, j + 1)

    return walk(0, 0)


def match_any(patterns: Iterable[str], path: str) -> bool:
    return any(matches(p, path) for p in patterns)


def _intersects(
    a: Sequence[str],
    b: Sequence[str],
    is_star: Callable[[str], bool],
    compatible: Callable[[str, str], bool],
) -> bool:
    """Non-empty intersection of two token sequences.

    A star token matches any number of units (including none); every other
    token matches exactly one unit. `compatible(x, y)` says whether some
    single unit is accepted by both non-star tokens (or by a star and a
    non-star).
    """

    @lru_cache(maxsize=None)
    def walk(i: int, j: int) -> bool:
        if i == len(a) and j == len(b):
            return True

        a_star = i < len(a) and is_star(a[i])
        b_star = j < len(b) and is_star(b[j])

        # a star may match nothing
        if a_star and walk(i + 1, j):
            return True
        if b_star and walk(i, j + 1):
            return True

        # consume one unit accepted by both current tokens
        if i < len(a) and j < len(b) and not (a_star and b_star):
            if compatible(a[i], b[j]):
                ni = i if a_star else i + 1
                nj = j if b_star else j + 1
                if walk(ni, nj):
                    return True

        return False

    return walk(0, 0)


def _segment_tokens(segment: str) -> tuple[str, ...]:
    """Tokenize one segment glob: '*', '?', a '[...]' class, or a literal char."""
    tokens = []
    i = 0
    while i < len(segment):
        ch = segment[i]
        if ch == "[":
            end = _class_end(segment, i)
            if end != -1:
                tokens.append(segment[i:end + 1])
                i = end + 1
                continue
        tokens.append(ch)
        i += 1
    return tuple(tokens)


def _is_wild_char(token: str) -> bool:
    return token in (_STAR, _ANY) or (len(token) > 1 and token.startswith("["))


def _chars_compatible(x: str, y: str) -> bool:
    if _is_wild_char(x) or _is_wild_char(y):
        return True
    return x == y


@lru_cache(maxsize=4096)
def segments_overlap(seg_a: str, seg_b: str) -> bool:
    """True if some single path segment matches both segment globs."""
    if seg_a == seg_b:
        return True
    return _intersects(
        _segment_tokens(seg_a),
        _segment_tokens(seg_b),
        is_star=lambda t: t == _STAR,
        compatible=_chars_compatible,
    )


def overlaps(pattern_a: str, pattern_b: str) -> bool:
    """True if at least one path could be matched by both patterns.

    Symmetric. Conservative: may report an overlap that no real path can
    produce (character classes), never misses a real one.
    """
    if not pattern_a or not pattern_b:
        return False

    a = tuple(normalize_pattern(pattern_a).split("/"))
    b = tuple(normalize_pattern(pattern_b).split("/"))

    return _intersects(
        a,
        b,
        is_star=lambda seg: seg == GLOBSTAR,
        compatible=segments_overlap,
    )


def overlapping_patterns(scope_a: Iterable[str], scope_b: Iterable[str]) -> list[tuple[str, str]]:
    """Every (a, b) pair across two scopes that overlaps, in input order."""
    scope_b = list(scope_b)
    return [(pa, pb) for pa in scope_a for pb in scope_b if overlaps(pa, pb)]


def scopes_overlap(scope_a: Iterable[str], scope_b: Iterable[str]) -> bool:
    scope_b = list(scope_b)
    return any(overlaps(pa, pb) for pa in scope_a for pb in scope_b)
