"""Keyword ↔ tag lookup against the pydicom data dictionary."""

from pydicom.datadict import keyword_for_tag, tag_for_keyword


def resolve_tag(name: str) -> str | None:
    """Resolve a keyword such as ``PatientName`` to its tag, e.g. ``"00100010"``.

    Matching is exact and case-sensitive. Unknown names yield None so that callers
    can fall back to treating the input as a tag already.
    """
    tag = tag_for_keyword(name)
    if tag is None:
        return None
    return f"{tag:08X}"


def keyword_for(tag: str) -> str | None:
    """Reverse lookup: ``"00100010"`` → ``PatientName``."""
    try:
        keyword = keyword_for_tag(int(tag, 16))
    except ValueError:
        return None
    return keyword or None
