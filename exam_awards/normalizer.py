import re
from typing import Optional

_WHITESPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[.,;:!?]")


def normalize(text: Optional[str]) -> str:
    """
    Lowercase, collapse whitespace, drop . , ; : ! ? and trim.
    None / empty -> "".
    """
    if not text:
        return ""
    s = text.lower()
    s = _WHITESPACE_RE.sub(" ", s)
    s = _PUNCT_RE.sub("", s)
    # removing punctuation can leave adjacent spaces ("a . b")
    s = _WHITESPACE_RE.sub(" ", s)
    return s.strip()
