import re
from typing import Iterable, List, Pattern


def compile_pattern(glob: str) -> Pattern[str]:
    """
    Translates a glob into an anchored, case-insensitive regex.
    '*' matches any run of characters (including '/'), '?' exactly one.
    """
    parts = []
    for ch in glob:
        if ch == '*':
            parts.append('.*')
        elif ch == '?':
            parts.append('.')
        else:
            parts.append(re.escape(ch))
    return re.compile('^' + ''.join(parts) + '$', re.IGNORECASE)


class ExclusionMatcher:
    def __init__(self, patterns: Iterable[str]):
        self.patterns = [p for p in patterns if p]
        self._compiled: List[Pattern[str]] = [compile_pattern(p) for p in self.patterns]

    def is_excluded(self, relative_path: str, name: str) -> bool:
        """A match against either the mount-relative path or the bare name excludes."""
        return any(rx.match(relative_path) or rx.match(name) for rx in self._compiled)

    def __bool__(self) -> bool:
        return bool(self._compiled)
