"""Version parsing and ordering."""

import functools
import re
from typing import Iterable, List, NamedTuple, Optional


VERSION_REGEX = re.compile(r"^(\d+)\.(\d+)(?:-(alpha|beta|dev|RC)(\d+)?)?$")

# dev builds sort above the release they lead to, pre-releases below it
STABILITY_RANK = {
    "dev": 5,
    "": 4,
    "RC": 3,
    "beta": 2,
    "alpha": 1,
}


class Version(NamedTuple):
    """A parsed ``MAJOR.MINOR[-QUALIFIER[N]]`` version."""
    major: int
    minor: int
    stability: str = ""
    number: int = 0

    def sort_key(self):
        return (self.major, self.minor, STABILITY_RANK[self.stability], self.number)

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}"
        if self.stability:
            version += f"-{self.stability}"
            if self.number:
                version += str(self.number)
        return version


def parse_version(value) -> Optional[Version]:
    """Parse a version string, returning None when it is not valid."""
    if value is None:
        return None
    match = VERSION_REGEX.match(str(value).strip())
    if not match:
        return None
    major, minor, stability, number = match.groups()
    return Version(int(major), int(minor), stability or "", int(number or 0))


def compare_versions(left, right) -> int:
    """Compare two versions; returns -1, 0 or 1.

    Unparsable versions sort below every valid one and equal to each other.
    """
    left_version = parse_version(left)
    right_version = parse_version(right)
    if left_version is None or right_version is None:
        if left_version is None and right_version is None:
            return 0
        return -1 if left_version is None else 1
    left_key = left_version.sort_key()
    right_key = right_version.sort_key()
    return (left_key > right_key) - (left_key < right_key)


def sort_versions(versions: Iterable[str], reverse: bool = True) -> List[str]:
    """Sort version strings, highest first by default."""
    return sorted(versions, key=functools.cmp_to_key(compare_versions), reverse=reverse)


def version_satisfies(installed, comparator: str, required) -> bool:
    """Check ``installed <comparator> required``."""
    if parse_version(installed) is None:
        return False
    result = compare_versions(installed, required)
    return {
        "=": result == 0,
        "<": result < 0,
        "<=": result <= 0,
        ">": result > 0,
        ">=": result >= 0,
    }[comparator]
