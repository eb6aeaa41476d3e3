"""Context snippets for search hits and backlinks."""
from notegraph_mcp.services.wikilink_parser import iter_wikilinks, normalize_note_title
from notegraph_mcp.utils import collapse_whitespace

ELLIPSIS = "..."
DEFAULT_CONTEXT_CHARS = 40


def extract_snippet(
    text: str, position: int, length: int, context_chars: int = DEFAULT_CONTEXT_CHARS
) -> str:
    """Return ``text[position:position+length]`` with surrounding context.

    Up to ``context_chars`` characters are kept on each side. An ellipsis
    marks each side that was cut, and whitespace runs become single spaces.
    """
    start = max(0, position - context_chars)
    end = min(len(text), position + length + context_chars)

    snippet = text[start:end]
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(text):
        snippet = snippet + ELLIPSIS
    return collapse_whitespace(snippet).strip()


def extract_search_snippet(
    text: str,
    query: str,
    fallback: str,
    context_chars: int = DEFAULT_CONTEXT_CHARS,
) -> str:
    """Snippet around the first case-insensitive occurrence of ``query``.

    Returns ``fallback`` when the text is empty, the query is empty or
    the query does not occur.
    """
    if not text or not query:
        return fallback
    position = text.lower().find(query.lower())
    if position == -1:
        return fallback
    return extract_snippet(text, position, len(query), context_chars) or fallback


def extract_wikilink_snippet(
    markdown: str,
    target_title: str,
    fallback: str,
    context_chars: int = DEFAULT_CONTEXT_CHARS,
) -> str:
    """Snippet around the first wikilink in ``markdown`` pointing at ``target_title``.

    Matching uses normalized titles, so ``[[ my note#Intro ]]`` is found for
    "My Note".
    """
    wanted = normalize_note_title(target_title)
    for link in iter_wikilinks(markdown):
        if normalize_note_title(link.note_title) == wanted:
            return extract_snippet(
                markdown, link.start, link.end - link.start, context_chars
            ) or fallback
    return fallback
