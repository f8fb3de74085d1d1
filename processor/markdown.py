"""Markdown to HTML rendering for event descriptions."""
from markdown_it import MarkdownIt

_renderer = MarkdownIt(
    'commonmark',
    {'breaks': True, 'linkify': True, 'typographer': True}
).enable(['linkify', 'replacements', 'smartquotes'])


def markdown_to_html(text: str) -> str:
    """
    Convert markdown to HTML.
    
    Args:
        text: Markdown source
        
    Returns:
        Rendered HTML, or an empty string for empty input
    """
    if not text:
        return ''
    return _renderer.render(text)
