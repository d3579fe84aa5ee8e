"""Find/replace over memo text.

Literal keywords match left to right without overlap: after a hit at ``i``
of length ``L`` the scan resumes at ``i + L``. Regex keywords go straight to
``re``; an invalid pattern raises ``re.error``.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class SearchMatch:
    offset: int
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


def _compile(keyword: str, case_sensitive: bool, use_regex: bool) -> re.Pattern[str]:
    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile(keyword if use_regex else re.escape(keyword), flags)


def find_matches(
    text: str,
    keyword: str,
    case_sensitive: bool = False,
    use_regex: bool = False,
) -> Iterator[SearchMatch]:
    """Yield matches lazily, in order of offset."""
    if not text or not keyword:
        return
    pattern = _compile(keyword, case_sensitive, use_regex)
    if use_regex:
        for m in pattern.finditer(text):
            yield SearchMatch(m.start(), m.end() - m.start())
        return

    pos = 0
    while pos < len(text):
        m = pattern.search(text, pos)
        if m is None:
            break
        yield SearchMatch(m.start(), m.end() - m.start())
        pos = m.end()


def splice(text: str, matches: list[SearchMatch], replacement: str) -> str:
    """Replace each match in ``matches`` (sorted, non-overlapping) with ``replacement``."""
    parts: list[str] = []
    pos = 0
    for match in matches:
        parts.append(text[pos : match.offset])
        parts.append(replacement)
        pos = match.end
    parts.append(text[pos:])
    return "".join(parts)


def replace(
    text: str,
    keyword: str,
    replacement: str,
    case_sensitive: bool = False,
    use_regex: bool = False,
) -> str:
    """Replace every match. The replacement is literal, group references included."""
    if not text or not keyword:
        return text
    if use_regex:
        return _compile(keyword, case_sensitive, True).sub(lambda _: replacement, text)
    return splice(text, list(find_matches(text, keyword, case_sensitive)), replacement)


class MatchNavigator:
    """Cursor over the matches of one keyword in one text.

    The match list is recomputed only when the text, keyword or flags change;
    stepping through it never searches again.
    """

    def __init__(self) -> None:
        self.text = ""
        self.keyword = ""
        self.case_sensitive = False
        self.use_regex = False
        self.matches: list[SearchMatch] = []
        self.index = -1
        self._key: tuple | None = None

    def update(
        self,
        text: str,
        keyword: str,
        case_sensitive: bool = False,
        use_regex: bool = False,
    ) -> bool:
        """Point the navigator at new input. Returns True if matches were recomputed."""
        key = (text, keyword, case_sensitive, use_regex)
        if key == self._key:
            return False
        matches = list(find_matches(text, keyword, case_sensitive, use_regex))
        self.text, self.keyword, self.case_sensitive, self.use_regex = key
        self._key = key
        self.matches = matches
        self.index = 0 if matches else -1
        return True

    @property
    def count(self) -> int:
        return len(self.matches)

    @property
    def current(self) -> SearchMatch | None:
        if self.index < 0:
            return None
        return self.matches[self.index]

    @property
    def position(self) -> int:
        """1-based position of the current match, 0 when there is none."""
        return self.index + 1

    def next(self) -> SearchMatch | None:
        if not self.matches:
            return None
        self.index = (self.index + 1) % len(self.matches)
        return self.matches[self.index]

    def previous(self) -> SearchMatch | None:
        if not self.matches:
            return None
        self.index = (self.index - 1) % len(self.matches)
        return self.matches[self.index]

    def replace_current(self, replacement: str) -> str:
        """Replace the current match only and return the new text.

        The cursor stays on the same ordinal, so repeated calls walk the
        remaining matches.
        """
        match = self.current
        if match is None:
            return self.text
        ordinal = self.index
        text = splice(self.text, [match], replacement)
        self.update(text, self.keyword, self.case_sensitive, self.use_regex)
        if self.matches:
            self.index = min(ordinal, len(self.matches) - 1)
        return text
