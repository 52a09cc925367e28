"""Author-credit normalization.

Turns the free-text AUTHOR field returned by the library API
(e.g. ``"지음: 김철수 ; 그림: 이영희 (삽화)"``) into a cleaned list of person
names plus the short form shown next to a title (``"김철수 외"``).

The cleaning rules are a best-effort heuristic driven by an ``AuthorPolicy``
table. The default table covers common Korean and English credit labels and
can be extended from a YAML file:

```yaml
role_words: ["캐릭터", "colorist"]
et_al_markers: ["및"]
separators: ["+"]
```
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_ROLE_WORDS: tuple[str, ...] = (
    # Korean credit labels
    "지음",
    "지은이",
    "저",
    "저자",
    "공저",
    "편저",
    "대표저자",
    "글",
    "그림",
    "글그림",
    "옮김",
    "옮긴이",
    "역",
    "역자",
    "공역",
    "번역",
    "엮음",
    "엮은이",
    "편",
    "편집",
    "편역",
    "감수",
    "원작",
    "기획",
    "사진",
    "해설",
    "일러스트",
    "삽화",
    "각색",
    "구성",
    "그린이",
    # English credit labels
    "author",
    "authors",
    "written by",
    "illustrator",
    "illustrated by",
    "illustrations",
    "translator",
    "translated by",
    "editor",
    "editors",
    "edited by",
    "supervisor",
    "supervised by",
    "foreword",
    "ed.",
    "eds.",
    "trans.",
    "by",
)

DEFAULT_ET_AL_MARKERS: tuple[str, ...] = ("외", "등", "et al.", "et al")

DEFAULT_SEPARATORS: tuple[str, ...] = ("·", "ㆍ", "・", "•", ";", "|", "/", "&", "and")

ET_AL_DISPLAY = "외"

_BRACKETED_RE = re.compile(r"\([^()]*\)|\[[^\[\]]*\]|\{[^{}]*\}|（[^（）]*）|〔[^〔〕]*〕")
_ROLE_PREFIX_RE = re.compile(r"^[^:,]{0,20}:\s*")
_WS_RE = re.compile(r"\s+")
_DIGIT_RE = re.compile(r"\d")

# Hangul (and Hanja) personal names: letters, spaces and interpuncts
_NATIVE_NAME_RE = re.compile(r"^[가-힣一-鿿][가-힣一-鿿 ·]*$")
_LATIN_LETTER = "A-Za-zÀ-ÖØ-öø-ÿ"
_LATIN_NAME_RE = re.compile(rf"^[{_LATIN_LETTER}](?:[{_LATIN_LETTER} .'\-]*[{_LATIN_LETTER}])?$")

NATIVE_MIN_CHARS = 2
NATIVE_MAX_CHARS = 8
TOKEN_MIN_LEN = 2
TOKEN_MAX_LEN = 30


def _word_pattern(words: tuple[str, ...]) -> str:
    """Alternation of ``words`` (longest first) that only matches standalone tokens."""
    ordered = sorted({w.strip() for w in words if w.strip()}, key=len, reverse=True)
    body = "|".join(re.escape(w).replace(r"\ ", r"\s+") for w in ordered)
    return rf"(?<!\w)(?:{body})(?!\w)"


@dataclass
class AuthorPolicy:
    """Tunable word lists for author-credit cleaning.

    Attributes:
        role_words: Credit labels removed wherever they stand alone
        et_al_markers: Suffixes meaning "and others", dropped from a name
        separators: Strings treated as name separators besides commas
    """

    role_words: tuple[str, ...] = DEFAULT_ROLE_WORDS
    et_al_markers: tuple[str, ...] = DEFAULT_ET_AL_MARKERS
    separators: tuple[str, ...] = DEFAULT_SEPARATORS
    _role_re: re.Pattern[str] = field(init=False, repr=False, compare=False)
    _separator_re: re.Pattern[str] = field(init=False, repr=False, compare=False)
    _et_al_re: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.role_words = tuple(self.role_words)
        self.et_al_markers = tuple(self.et_al_markers)
        self.separators = tuple(self.separators)

        self._role_re = re.compile(_word_pattern(self.role_words), re.IGNORECASE)

        # Word-like separators ("and") must stand alone; symbols match anywhere
        words = tuple(s for s in self.separators if s.strip() and s.strip()[0].isalnum())
        symbols = sorted((s for s in self.separators if s and s not in words), key=len, reverse=True)
        parts = [re.escape(s) for s in symbols]
        if words:
            parts.append(_word_pattern(words))
        self._separator_re = re.compile("|".join(parts), re.IGNORECASE) if parts else re.compile(r"(?!x)x")

        # "김철수 외", "김철수 외 3인", "Smith et al."
        markers = "|".join(re.escape(m) for m in sorted(self.et_al_markers, key=len, reverse=True))
        self._et_al_re = re.compile(rf"\s+(?:{markers})(?:\s*\d+\s*(?:인|명))?\.?\s*$", re.IGNORECASE)

    @classmethod
    def from_dict(cls, data: dict[str, Any], extend: bool = True) -> AuthorPolicy:
        """Build a policy from a mapping of word lists.

        Args:
            data: Mapping with optional ``role_words``, ``et_al_markers`` and
                ``separators`` lists
            extend: Add to the default lists instead of replacing them
        """
        defaults = cls()
        values: dict[str, tuple[str, ...]] = {}
        for name in ("role_words", "et_al_markers", "separators"):
            extra = tuple(str(w) for w in (data.get(name) or []))
            base = getattr(defaults, name) if extend else ()
            values[name] = tuple(dict.fromkeys(base + extra)) if (extend or extra) else getattr(defaults, name)
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str | Path, extend: bool = True) -> AuthorPolicy:
        """Load a policy from a YAML file.

        Args:
            path: Path to YAML file
            extend: Add to the default lists instead of replacing them

        Returns:
            AuthorPolicy instance
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Author policy file {path} must contain a mapping")
        policy = cls.from_dict(data, extend=extend)
        logger.debug(
            "Loaded author policy from %s: %d role words, %d et-al markers",
            path,
            len(policy.role_words),
            len(policy.et_al_markers),
        )
        return policy

    def strip_roles(self, text: str) -> str:
        return self._role_re.sub(" ", text)

    def has_role(self, text: str) -> bool:
        return bool(self._role_re.search(text))

    def unify_separators(self, text: str) -> str:
        return self._separator_re.sub(",", text)

    def strip_et_al(self, token: str) -> str:
        return self._et_al_re.sub("", token)


DEFAULT_POLICY = AuthorPolicy()


@dataclass(frozen=True)
class AuthorNames:
    """Normalized author credit.

    Attributes:
        names: Person names in credit order
        name: Names joined with ", "
        short: First name alone, or "<first> 외" for several names
        count: Number of names
    """

    names: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return ", ".join(self.names)

    @property
    def short(self) -> str:
        if not self.names:
            return ""
        if len(self.names) == 1:
            return self.names[0]
        return f"{self.names[0]} {ET_AL_DISPLAY}"

    @property
    def count(self) -> int:
        return len(self.names)


def looks_like_person_name(token: str, policy: AuthorPolicy = DEFAULT_POLICY) -> bool:
    """Heuristic check that a cleaned token is a plausible person name."""
    if not (TOKEN_MIN_LEN <= len(token) <= TOKEN_MAX_LEN):
        return False
    if _DIGIT_RE.search(token) or policy.has_role(token):
        return False
    if _NATIVE_NAME_RE.match(token):
        significant = len(token.replace(" ", "").replace("·", ""))
        return NATIVE_MIN_CHARS <= significant <= NATIVE_MAX_CHARS
    return bool(_LATIN_NAME_RE.match(token))


def split_author_credit(raw: str | None, policy: AuthorPolicy = DEFAULT_POLICY) -> list[str]:
    """Split a raw author credit into person names.

    Args:
        raw: AUTHOR field text as returned upstream
        policy: Word lists used for cleaning

    Returns:
        Names in credit order; empty when nothing name-like survives.
    """
    text = str(raw or "").strip()
    if not text:
        return []

    # Nested annotations collapse from the inside out
    prev = None
    while prev != text:
        prev = text
        text = _BRACKETED_RE.sub(" ", text)

    text = policy.unify_separators(text)
    text = policy.strip_roles(text)

    names: list[str] = []
    for token in text.split(","):
        token = _ROLE_PREFIX_RE.sub("", token.strip())
        token = _WS_RE.sub(" ", token).strip(" :")
        token = policy.strip_et_al(token).strip()
        if looks_like_person_name(token, policy):
            names.append(token)
    return names


def normalize_authors(raw: str | None, policy: AuthorPolicy | None = None) -> AuthorNames:
    """Normalize a raw author credit (see ``split_author_credit``)."""
    return AuthorNames(tuple(split_author_credit(raw, policy or DEFAULT_POLICY)))
