import re

_NON_ALNUM = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")
_LEGAL_SUFFIX = re.compile(r"\s+(inc|llc|ltd|corp|corporation|company|co|limited)$")


def normalize_company_name(company: str | None) -> str:
    """Canonical form of a company name, used as the cross-user equality key.

    "Google Inc." and "google" both become "google". A suffix is only removed
    when something precedes it, so "Co" on its own stays "co". Suffixes are
    stripped until none is left, which keeps the function idempotent
    ("Acme Co Inc" -> "acme").
    """
    if not company:
        return ""
    text = _NON_ALNUM.sub("", company.lower())
    text = _WHITESPACE.sub(" ", text).strip()
    while True:
        stripped = _LEGAL_SUFFIX.sub("", text)
        if stripped == text:
            return text
        text = stripped
