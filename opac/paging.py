"""Sequential crawl over backend views that are split into pages."""

import logging
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

MAX_PAGES = 50

Doc = TypeVar("Doc")


def crawl(
    fetch: Callable[[str], Doc],
    first_url: str,
    next_url: Callable[[Doc, str], str | None],
    max_pages: int = MAX_PAGES,
) -> list[Doc]:
    """Fetch `first_url` and follow "next page" links until there are none.

    Stops early when a backend links back to a page it already served or
    after `max_pages` pages.
    """
    docs = []
    seen = set()
    url = first_url

    while url is not None:
        if url in seen:
            logger.warning("page %s was already fetched, stopping crawl", url)
            break
        if len(docs) >= max_pages:
            logger.warning("stopping crawl of %s after %d pages", first_url, max_pages)
            break
        seen.add(url)
        logger.debug("fetching page %d: %s", len(docs) + 1, url)
        doc = fetch(url)
        docs.append(doc)
        url = next_url(doc, url)

    return docs
