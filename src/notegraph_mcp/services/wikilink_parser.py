"""Parser for Obsidian-style wikilinks in markdown.

Recognised forms:

- ``[[Note Title]]`` plain link
- ``[[Note Title#Heading]]`` link to a heading inside the note
- ``[[Note Title^block-id]]`` link to a block inside the note

Everything here is pure text processing: nothing touches storage, and
malformed input is skipped rather than reported. Use
``validate_wikilink_syntax`` when a caller wants explicit errors.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from notegraph_mcp.models.schema import LinkType
from notegraph_mcp.utils import collapse_whitespace

# Shortest run between "[[" and the next "]]" that does not itself contain
# "[[". For "[[A [[B]]" the outer span is abandoned and only "[[B]]" matches.
WIKILINK_PATTERN = re.compile(r"\[\[((?:(?!\[\[)[^\]])+)\]\]")

# Greedy head, so the split happens on the last marker. "." stops at line
# breaks: a marker on another line than the title is part of the title.
_BLOCK_PATTERN = re.compile(r"^(.+)\^(.+)$")
_HEADING_PATTERN = re.compile(r"^(.+)#(.+)$")


@dataclass(frozen=True)
class ParsedWikilink:
    """One wikilink occurrence found in markdown.

    Attributes:
        full_text: The link exactly as written, brackets included.
        note_title: Target title, trimmed.
        heading: Heading after ``#``, if any.
        block_id: Block id after ``^``, if any.
        start: Offset of the opening ``[[``.
        end: Offset just past the closing ``]]``.
    """

    full_text: str
    note_title: str
    heading: Optional[str] = None
    block_id: Optional[str] = None
    start: int = 0
    end: int = 0

    @property
    def link_type(self) -> LinkType:
        return determine_link_type(self.heading, self.block_id)


@dataclass(frozen=True)
class LinkValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class LinkExtractionSummary:
    """All links in a document with per-kind counts."""

    links: List[ParsedWikilink]
    total: int
    by_type: Dict[str, int]


def parse_wikilink_text(link_text: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Split the text between the brackets into (title, heading, block_id).

    A ``^`` with text on both sides wins over ``#``; in each case the split is
    on the last marker. All parts are trimmed.

    >>> parse_wikilink_text("  Note Title  #  Heading  ")
    ('Note Title', 'Heading', None)
    >>> parse_wikilink_text("Spec#Intro^b1")
    ('Spec#Intro', None, 'b1')
    """
    trimmed = link_text.strip()

    block_match = _BLOCK_PATTERN.match(trimmed)
    if block_match:
        return block_match.group(1).strip(), None, block_match.group(2).strip()

    heading_match = _HEADING_PATTERN.match(trimmed)
    if heading_match:
        return heading_match.group(1).strip(), heading_match.group(2).strip(), None

    return trimmed, None, None


def determine_link_type(
    heading: Optional[str] = None, block_id: Optional[str] = None
) -> LinkType:
    """Block references take precedence over headings."""
    if block_id:
        return LinkType.BLOCK
    if heading:
        return LinkType.HEADING
    return LinkType.WIKILINK


def iter_wikilinks(markdown: str) -> Iterator[ParsedWikilink]:
    """Yield every wikilink in ``markdown`` in document order.

    Links whose title is empty once trimmed, such as ``[[   ]]``, are
    skipped.
    """
    if not markdown:
        return
    for match in WIKILINK_PATTERN.finditer(markdown):
        title, heading, block_id = parse_wikilink_text(match.group(1))
        if not title:
            continue
        yield ParsedWikilink(
            full_text=match.group(0),
            note_title=title,
            heading=heading,
            block_id=block_id,
            start=match.start(),
            end=match.end(),
        )


def extract_wikilinks(markdown: str) -> List[ParsedWikilink]:
    """Return all wikilinks in ``markdown`` as a list."""
    return list(iter_wikilinks(markdown))


def normalize_note_title(title: str) -> str:
    """Case-fold, trim and collapse whitespace so equivalent titles compare equal."""
    return collapse_whitespace(title.lower().strip())


def note_titles_match(title1: str, title2: str) -> bool:
    return normalize_note_title(title1) == normalize_note_title(title2)


def validate_wikilink_syntax(link_text: str) -> LinkValidationResult:
    """Check the text that would go between ``[[`` and ``]]``.

    Every problem found is reported; this never raises.
    """
    errors = []
    text = link_text or ""

    if not text.strip():
        errors.append("Link text cannot be empty")

    if "[[" in text or "]]" in text:
        errors.append("Nested brackets are not allowed")

    hash_count = text.count("#")
    caret_count = text.count("^")

    if hash_count > 1:
        errors.append("Only one heading reference (#) is allowed")
    if caret_count > 1:
        errors.append("Only one block reference (^) is allowed")
    if hash_count and caret_count:
        errors.append("Cannot have both heading (#) and block (^) references")

    return LinkValidationResult(valid=not errors, errors=errors)


def unique_note_titles(links: Iterable[ParsedWikilink]) -> List[str]:
    """Distinct target titles, exact strings, in first-seen order."""
    return list(dict.fromkeys(link.note_title for link in links))


def count_links_by_type(links: Iterable[ParsedWikilink]) -> Dict[str, int]:
    counts = {link_type.value: 0 for link_type in LinkType}
    for link in links:
        counts[link.link_type.value] += 1
    return counts


def summarize_wikilinks(markdown: str) -> LinkExtractionSummary:
    links = extract_wikilinks(markdown)
    return LinkExtractionSummary(
        links=links, total=len(links), by_type=count_links_by_type(links)
    )
