"""
HTML to text extraction for feed bodies.

Feed entries carry HTML fragments (full `content:encoded` bodies or short
descriptions). These helpers reduce them to readable text with paragraph
breaks and markdown-style headings, which is what the summarizer sees.
"""

import re
import unicodedata

from bs4 import BeautifulSoup

NOISE_TAGS = ["script", "style", "noscript", "iframe", "nav", "header", "footer", "aside", "form"]

NOISE_CLASSES = re.compile(
    r"(^|\s)(ads?|advertisement|sidebar|comments?|social-share|share-buttons|"
    r"related-posts|newsletter-signup|subscription-form|cookie-banner|popup|modal)(\s|$)"
)

BLOCK_TAGS = ["p", "li", "blockquote", "pre", "div", "tr", "br"]

# Common newsletter footer lines that add words but no content
NEWSLETTER_ARTIFACTS = [
    re.compile(r"[^.\n]*\bsubscribe to (our|the|my) newsletter\b[^.\n]*\.?", re.IGNORECASE),
    re.compile(r"[^.\n]*\bview (this email|it) in your browser\b[^.\n]*\.?", re.IGNORECASE),
    re.compile(r"[^.\n]*\bunsubscribe\b[^.\n]*\.?", re.IGNORECASE),
    re.compile(r"[^.\n]*\bforward(ed)? this email\b[^.\n]*\.?", re.IGNORECASE),
]


def extract_text_content(html: str) -> str:
    """Convert an HTML fragment or document into cleaned plain text."""
    if not html or not html.strip():
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(NOISE_TAGS):
        tag.decompose()
    for tag in soup.find_all(class_=NOISE_CLASSES):
        tag.decompose()

    for level in range(1, 7):
        for heading in soup.find_all(f"h{level}"):
            text = heading.get_text(" ", strip=True)
            heading.replace_with(f"\n\n## {text}\n\n" if text else "")

    for tag in soup.find_all(BLOCK_TAGS):
        if tag.name == "br":
            tag.replace_with("\n")
        else:
            tag.insert_before("\n\n")
            tag.insert_after("\n\n")

    return clean_text(soup.get_text())


def clean_text(text: str) -> str:
    """Normalize unicode and whitespace, and drop newsletter boilerplate."""
    text = unicodedata.normalize("NFKC", text)
    text = re.sub(r"[\u200b-\u200d\ufeff]", "", text)
    text = text.replace("“", '"').replace("”", '"')
    text = text.replace("‘", "'").replace("’", "'")

    for pattern in NEWSLETTER_ARTIFACTS:
        text = pattern.sub("", text)

    text = re.sub(r"([!?.])\1+", r"\1", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def count_words(text: str) -> int:
    return len(text.split())
