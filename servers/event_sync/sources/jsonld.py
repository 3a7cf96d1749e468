"""schema.org Event extraction from <script type="application/ld+json"> blocks."""

import json

from bs4 import BeautifulSoup


def _is_event(item: dict) -> bool:
    kind = item.get("@type")
    if isinstance(kind, list):
        return any(str(k).endswith("Event") for k in kind)
    return isinstance(kind, str) and kind.endswith("Event")


def extract_jsonld_events(soup: BeautifulSoup) -> list[dict]:
    """Every Event object in the page, including ones nested in @graph."""
    events: list[dict] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or script.get_text() or "")
        except ValueError:
            # Broken blocks are common; skip them
            continue

        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                continue
            if _is_event(item):
                events.append(item)
            for nested in item.get("@graph") or []:
                if isinstance(nested, dict) and _is_event(nested):
                    events.append(nested)
    return events
