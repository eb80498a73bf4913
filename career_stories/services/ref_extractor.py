"""
Ref Extractor

Pulls cross-tool reference tokens out of activity text so activities from
different tools can be linked: Jira keys, GitHub PR refs, Confluence pages,
Figma files, Google Workspace documents and Slack channels.

Refs are normalized to a stable form:
    AUTH-123                  Jira issue
    acme/backend#42           GitHub PR or issue
    confluence:987654         Confluence page
    figma:ABC123XYZ           Figma file
    gdoc:<id>, gsheet:<id>    Google Docs / Sheets
    gslides:<id>, gdrive:<id> Google Slides / Drive file
    gmeet:abc-defg-hij        Google Meet code
    slack:C0123ABC            Slack channel
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefPattern:
    """A compiled reference pattern and how to normalize its matches."""

    pattern_id: str
    regex: "re.Pattern[str]"
    normalize: Callable[["re.Match[str]"], str]


# Order matters: earlier patterns claim refs first when deduplicating.
DEFAULT_PATTERNS: List[RefPattern] = [
    RefPattern(
        "github-pr-url",
        re.compile(r"github\.com/([\w.-]+)/([\w.-]+)/(?:pull|issues)/(\d+)"),
        lambda m: f"{m.group(1)}/{m.group(2)}#{m.group(3)}",
    ),
    RefPattern(
        "github-short",
        re.compile(r"(?<![\w/.-])([\w-]+)/([\w.-]+)#(\d+)\b"),
        lambda m: f"{m.group(1)}/{m.group(2)}#{m.group(3)}",
    ),
    RefPattern(
        "jira-key",
        re.compile(r"\b([A-Z][A-Z0-9]{1,9}-\d+)\b"),
        lambda m: m.group(1),
    ),
    RefPattern(
        "confluence-page-url",
        re.compile(r"atlassian\.net/wiki/spaces/[\w~-]+/pages/(\d+)"),
        lambda m: f"confluence:{m.group(1)}",
    ),
    RefPattern(
        "confluence-page-raw",
        re.compile(r'"pageId"\s*:\s*"?(\d{4,})"?'),
        lambda m: f"confluence:{m.group(1)}",
    ),
    RefPattern(
        "figma-file-url",
        re.compile(r"figma\.com/(?:file|design|proto)/([a-zA-Z0-9]{6,})"),
        lambda m: f"figma:{m.group(1)}",
    ),
    RefPattern(
        "google-docs",
        re.compile(r"docs\.google\.com/document/d/([a-zA-Z0-9_-]{25,})"),
        lambda m: f"gdoc:{m.group(1)}",
    ),
    RefPattern(
        "google-sheets",
        re.compile(r"docs\.google\.com/spreadsheets/d/([a-zA-Z0-9_-]{25,})"),
        lambda m: f"gsheet:{m.group(1)}",
    ),
    RefPattern(
        "google-slides",
        re.compile(r"docs\.google\.com/presentation/d/([a-zA-Z0-9_-]{25,})"),
        lambda m: f"gslides:{m.group(1)}",
    ),
    RefPattern(
        "google-drive-file",
        re.compile(r"drive\.google\.com/file/d/([a-zA-Z0-9_-]{25,})"),
        lambda m: f"gdrive:{m.group(1)}",
    ),
    RefPattern(
        "google-docs-raw",
        re.compile(r'"documentId"\s*:\s*"([a-zA-Z0-9_-]{25,})"'),
        lambda m: f"gdoc:{m.group(1)}",
    ),
    RefPattern(
        "google-meet",
        re.compile(r"meet\.google\.com/([a-z]{3,4}-[a-z]{3,4}-[a-z]{3,4})", re.IGNORECASE),
        lambda m: f"gmeet:{m.group(1).lower()}",
    ),
    RefPattern(
        "google-meet-raw",
        re.compile(r'"meetCode"\s*:\s*"([a-z]{3,4}-[a-z]{3,4}-[a-z]{3,4})"', re.IGNORECASE),
        lambda m: f"gmeet:{m.group(1).lower()}",
    ),
    RefPattern(
        "slack-channel-raw",
        re.compile(r'"channelId"\s*:\s*"(C[A-Z0-9]{6,})"'),
        lambda m: f"slack:{m.group(1)}",
    ),
]


class RefExtractor:
    """Extracts and deduplicates cross-tool refs from free text."""

    def __init__(self, patterns: Optional[List[RefPattern]] = None):
        self.patterns = list(patterns) if patterns is not None else list(DEFAULT_PATTERNS)
        if not self.patterns:
            raise ValueError("RefExtractor has no registered patterns")

    def extract(self, texts: Iterable[Optional[str]]) -> List[str]:
        """
        Extract refs from several texts.

        None and empty strings are skipped. Refs are returned in first-seen
        order (pattern order, then position) without duplicates.
        """
        combined = "\n".join(t for t in texts if t)
        if not combined:
            return []

        refs: List[str] = []
        seen = set()
        for pattern in self.patterns:
            for match in pattern.regex.finditer(combined):
                ref = pattern.normalize(match)
                if ref not in seen:
                    seen.add(ref)
                    refs.append(ref)
        return refs

    def extract_from_activity(
        self,
        title: str,
        description: Optional[str] = None,
        source_url: Optional[str] = None,
        raw_data: Optional[Any] = None,
        include_source_url: bool = True,
    ) -> List[str]:
        """Extract refs from every text-bearing field of an activity."""
        texts: List[Optional[str]] = [title, description]
        if raw_data is not None:
            try:
                texts.append(json.dumps(raw_data, default=str))
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping unserializable raw_data: {e}")
        if include_source_url and source_url:
            texts.append(source_url)
        return self.extract(texts)
