#!/usr/bin/env python3
"""
LIHKG reply HTML -> plain text.

- Parse the `msg` field as an HTML fragment (lxml, falling back to html.parser).
- Drop every <blockquote> (quoted replies) together with everything inside it.
- Join the remaining text nodes in document order. No separator is inserted,
  so line breaks only come from newlines already present in the text nodes.
  Optionally, <br> variants can be turned into '\n' before parsing.
- Broken markup never raises; whatever text the parser recovers is returned.

Requires:
  pip install beautifulsoup4 lxml
"""

import re
import warnings

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning  # type: ignore


# Replies that are just a link or a path look like locators to bs4
warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)

# Matches <br>, <br/>, <br /> (any case), across messy HTML
BR_RE = re.compile(r"(?is)<\s*br\s*/?\s*>")

QUOTE_TAG = "blockquote"


def parse_fragment(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")


def strip_quotes(soup: BeautifulSoup) -> BeautifulSoup:
    # Outermost first; nested quotes go with their parent
    tag = soup.find(QUOTE_TAG)
    while tag is not None:
        tag.decompose()
        tag = soup.find(QUOTE_TAG)
    return soup


def scrub_surrogates(text: str) -> str:
    # Unpaired \ud800-\udfff (cut-off emoji in JSON escapes) become U+FFFD
    return text.encode("utf-8", errors="surrogatepass").decode("utf-8", errors="replace")


def html_to_text(html: str, break_on_br: bool = False) -> str:
    """
    Extract the reply's own text, without quoted replies.

    Text nodes are concatenated verbatim. With break_on_br=True each <br> is
    replaced by a newline first. Lone surrogates are replaced before parsing.
    """
    if not html:
        return ""
    html = scrub_surrogates(html)
    if break_on_br:
        html = BR_RE.sub("\n", html)

    soup = strip_quotes(parse_fragment(html))
    return soup.get_text()
