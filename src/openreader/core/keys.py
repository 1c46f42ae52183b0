"""Shared record keys to avoid magic strings across openreader modules."""

from __future__ import annotations

# Candidate record keys
K_PROVIDER = "provider"
K_PROVIDER_ID = "provider_id"
K_ARCHIVE_ID = "archive_id"
K_TITLE = "title"
K_AUTHOR = "author"
K_COVER_URL = "cover_url"
K_FORMAT = "format"
K_DIRECT_URL = "direct_url"
K_SOURCE_URL = "source_url"
K_YEAR = "year"
K_LANGUAGE = "language"

# Readability annotations
K_READABLE = "readable"
K_REASON = "reason"

# Reader token claims
K_EXP = "exp"
K_IAT = "iat"
