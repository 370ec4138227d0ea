"""Source analysis stage: product page or description -> ProductData.

Fetches the product URL (when given), reduces the HTML to visible text and
asks the analysis model for a structured ProductData. A description-only run
skips the fetch.
"""

import logging
import re
from html.parser import HTMLParser
from typing import Optional
from urllib.parse import urljoin

import httpx

from promopipe.config import settings
from promopipe.orchestrator.state import PipelineState, StatePatch
from promopipe.schemas.product import ProductData
from promopipe.services.llm import get_adapter

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = """You are a product marketing analyst. From the material \
below, extract what a 30-second promotional video needs: the product name, a \
short tagline, a two or three sentence description, 3-6 key features with \
one-sentence benefits, pricing and testimonials if present, brand colors as \
hex values, and the overall tone. Only use image URLs that appear in the \
material. Do not invent testimonials or prices."""

_SKIP_TAGS = {"script", "style", "noscript", "svg", "template"}


class _PageTextExtractor(HTMLParser):
    """Collects visible text, the page title and image sources."""

    def __init__(self, base_url: str) -> None:
        super().__init__(convert_charrefs=True)
        self.base_url = base_url
        self.title = ""
        self.chunks: list[str] = []
        self.images: list[str] = []
        self._skip_depth = 0
        self._in_title = False

    def handle_starttag(self, tag, attrs):
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
        elif tag == "title":
            self._in_title = True
        elif tag == "img":
            src = dict(attrs).get("src")
            if src and not src.startswith("data:"):
                self.images.append(urljoin(self.base_url, src))

    def handle_endtag(self, tag):
        if tag in _SKIP_TAGS and self._skip_depth:
            self._skip_depth -= 1
        elif tag == "title":
            self._in_title = False

    def handle_data(self, data):
        if self._skip_depth:
            return
        text = data.strip()
        if not text:
            return
        if self._in_title:
            self.title += text
        else:
            self.chunks.append(text)


def extract_page_text(html: str, base_url: str, max_chars: int) -> tuple[str, list[str]]:
    """Return (visible text, image URLs) for an HTML document."""
    parser = _PageTextExtractor(base_url)
    parser.feed(html)
    parser.close()
    text = re.sub(r"\s+", " ", " ".join(parser.chunks)).strip()
    if parser.title:
        text = f"Title: {parser.title}\n{text}"
    # De-duplicate images, keep order
    images = list(dict.fromkeys(parser.images))[:12]
    return text[:max_chars], images


async def fetch_page(url: str) -> str:
    """GET a product page and return its HTML.

    Raises:
        httpx.HTTPError: On transport errors and non-2xx responses.
    """
    async with httpx.AsyncClient(
        timeout=settings.pipeline.fetch_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": "Mozilla/5.0 (compatible; promopipe/0.1)"},
    ) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.text


def _build_prompt(state: PipelineState, page_text: Optional[str], images: list[str]) -> str:
    parts = []
    if state.source_url:
        parts.append(f"Product URL: {state.source_url}")
    if state.description:
        parts.append(f"Description from the user:\n{state.description}")
    if page_text:
        parts.append(f"Page content:\n{page_text}")
    if images:
        parts.append("Images on the page:\n" + "\n".join(images))
    parts.append(f"Preferred tone: {state.preferences.style}")
    return "\n\n".join(parts)


async def analyze_source(state: PipelineState) -> StatePatch:
    """Stage collaborator: produce ``product_data``."""
    page_text: Optional[str] = None
    images: list[str] = []

    if state.source_url:
        try:
            html = await fetch_page(state.source_url)
        except httpx.HTTPError as e:
            logger.warning(f"Fetching {state.source_url} failed: {e}")
            if not state.description:
                return StatePatch.failure(f"Could not fetch {state.source_url}: {e}")
        else:
            page_text, images = extract_page_text(
                html, state.source_url, settings.pipeline.max_page_chars
            )
            logger.info(f"Fetched {state.source_url}: {len(page_text)} chars, {len(images)} images")
            if not page_text and not state.description:
                return StatePatch.failure(f"No readable content at {state.source_url}")

    adapter = get_adapter(settings.models.analysis_llm)
    try:
        product = await adapter.generate_text(
            prompt=_build_prompt(state, page_text, images),
            schema=ProductData,
            temperature=0.3,
            system_prompt=ANALYSIS_SYSTEM_PROMPT,
        )
    except Exception as e:
        logger.error(f"Product analysis failed: {type(e).__name__}: {e}")
        return StatePatch.failure(f"Failed to analyze product: {e}")

    if not product.images and images:
        product.images = images
    logger.info(f"Analyzed product '{product.name}' ({len(product.features)} features)")
    return StatePatch(product_data=product.to_wire())
