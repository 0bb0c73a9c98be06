import html
import re

_SCRIPT_RE = re.compile(r"<(script|style)[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


def strip_html(markup: str) -> str:
    """Drop scripts/styles and tags, unescape entities, collapse whitespace."""
    if not markup:
        return ""
    s = _SCRIPT_RE.sub(" ", str(markup))
    s = _TAG_RE.sub(" ", s)
    s = html.unescape(s)
    s = s.replace("\u00a0", " ")  # nbsp -> space
    return re.sub(r"\s+", " ", s).strip()


def normalize_text(s: str) -> str:
    if not s:
        return s
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    s = s.replace("\u00a0", " ")
    # "configu-\nration" -> "configuration"
    s = re.sub(r"(\w)-\n(\w)", r"\1\2", s)
    s = re.sub(r"[ \t]{2,}", " ", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()
