"""
Category and tag taxonomy.

Each category owns a fixed set of canonical tags. Sources use varied
naming; normalize_tag maps those onto the canonical forms and drops
anything it cannot map.
"""

import re
from typing import Iterable, Optional

DEFAULT_CATEGORY = "concerts"

TAG_TAXONOMY: dict[str, list[str]] = {
    "concerts": [
        "rock", "indie", "hip-hop", "jazz", "blues", "folk", "classical",
        "metal", "punk", "latin", "country", "r-and-b", "pop", "alternative",
        "singer-songwriter", "world-music",
    ],
    "nightlife": [
        "edm", "house", "techno", "dj-set", "dance-party", "karaoke",
        "drag-show", "club-night",
    ],
    "comedy": ["stand-up", "improv", "sketch", "open-mic", "comedy-show"],
    "theater": [
        "musical", "play", "broadway", "off-broadway", "one-person-show",
        "puppet-show",
    ],
    "arts": [
        "gallery-opening", "art-walk", "installation", "film-screening",
        "photography", "dance-performance", "literary", "poetry",
    ],
    "sports": [
        "basketball", "football", "baseball", "soccer", "hockey", "mma",
        "boxing", "wrestling", "tennis", "esports",
    ],
    "community": [
        "market", "meetup", "workshop", "class", "food-festival", "charity",
        "family", "parade", "block-party",
    ],
    "festivals": [
        "music-festival", "food-and-drink", "cultural", "street-fair",
        "art-festival", "beer-festival", "wine-festival",
    ],
}

CATEGORIES = frozenset(TAG_TAXONOMY)

ALL_TAGS = frozenset(tag for tags in TAG_TAXONOMY.values() for tag in tags)


def _tag_key(raw: str) -> str:
    key = raw.lower().strip().replace("&", "-and-").replace("/", "-")
    key = re.sub(r"[\s_]+", "-", key)
    key = re.sub(r"[^\w-]", "", key)
    return re.sub(r"-{2,}", "-", key).strip("-")


# Source-specific spellings -> canonical tag. Keys go through _tag_key.
_RAW_ALIASES = {
    # music
    "dance/electronic": "edm", "electronic": "edm", "electronic/dance": "edm",
    "dance": "edm", "hip-hop/rap": "hip-hop", "hip hop": "hip-hop",
    "rap": "hip-hop", "r&b": "r-and-b", "rnb": "r-and-b",
    "rhythm and blues": "r-and-b", "soul": "r-and-b", "soul/r&b": "r-and-b",
    "rock/pop": "rock", "hard rock": "rock", "classic rock": "rock",
    "soft rock": "rock", "indie rock": "indie", "indie pop": "indie",
    "alt rock": "alternative", "alt country": "alternative",
    "folk rock": "folk", "americana": "folk", "bluegrass": "folk",
    "smooth jazz": "jazz", "country music": "country",
    "orchestral": "classical", "symphony": "classical", "opera": "classical",
    "chamber music": "classical", "heavy metal": "metal",
    "death metal": "metal", "black metal": "metal", "thrash metal": "metal",
    "punk rock": "punk", "pop punk": "punk", "hardcore": "punk",
    "latin music": "latin", "reggaeton": "latin", "salsa": "latin",
    "pop music": "pop", "singer/songwriter": "singer-songwriter",
    "acoustic": "singer-songwriter", "world": "world-music",
    "reggae": "world-music",
    # nightlife
    "house music": "house", "deep house": "house", "tech house": "house",
    "trance": "techno", "drum and bass": "techno", "dj": "dj-set",
    "dj night": "dj-set", "club": "club-night", "nightlife": "club-night",
    "drag": "drag-show",
    # comedy
    "standup": "stand-up", "stand-up comedy": "stand-up",
    "comedy": "comedy-show", "improvisation": "improv",
    "sketch comedy": "sketch", "open mike": "open-mic",
    # theater
    "musical theater": "musical", "musical theatre": "musical",
    "drama": "play", "broadway tickets national": "broadway",
    # arts
    "film": "film-screening", "movie": "film-screening",
    "gallery": "gallery-opening", "dance performance tour": "dance-performance",
    "ballet": "dance-performance", "modern dance": "dance-performance",
    "book reading": "literary", "spoken word": "poetry",
    # sports
    "nba": "basketball", "nfl": "football", "mlb": "baseball", "mls": "soccer",
    "nhl": "hockey", "ufc": "mma", "wwe": "wrestling", "e-sports": "esports",
    "gaming": "esports",
    # community
    "kids": "family", "children": "family", "farmers market": "market",
    "flea market": "market", "networking": "meetup", "seminar": "class",
    "lecture": "class", "fundraiser": "charity", "benefit": "charity",
    # festivals
    "festival": "music-festival", "festivals": "music-festival",
    "food festival": "food-and-drink",
}

TAG_ALIASES: dict[str, str] = {_tag_key(k): v for k, v in _RAW_ALIASES.items()}

# Ordered most specific first; the first category with a hit wins.
CATEGORY_KEYWORDS: list[tuple[str, list[str]]] = [
    ("comedy", ["comedy", "stand-up", "standup", "improv", "sketch"]),
    ("nightlife", ["dj", "edm", "techno", "house music", "dance party",
                   "club night", "rave"]),
    ("theater", ["theater", "theatre", "musical", "broadway", "play", "drama"]),
    ("festivals", ["festival", "fest"]),
    ("sports", ["basketball", "football", "soccer", "baseball", "hockey",
                "sports", "game day"]),
    ("arts", ["gallery", "art walk", "exhibition", "museum", "film screening",
              "poetry", "literary"]),
    ("community", ["market", "workshop", "meetup", "community", "fundraiser",
                   "charity", "class", "family"]),
    ("concerts", ["concert", "live music", "band", "show", "gig", "tour",
                  "acoustic"]),
]

# Free-text keyword -> raw tag, for sources without structured genres.
TAG_KEYWORDS: dict[str, str] = {
    "rock": "rock", "indie": "indie", "hip hop": "hip-hop",
    "hip-hop": "hip-hop", "rap": "hip-hop", "jazz": "jazz", "blues": "blues",
    "folk": "folk", "classical": "classical", "metal": "metal",
    "punk": "punk", "latin": "latin", "country": "country", "pop": "pop",
    "r&b": "r-and-b", "edm": "edm", "house": "house", "techno": "techno",
    "dj": "dj-set", "karaoke": "karaoke", "stand-up": "stand-up",
    "standup": "stand-up", "improv": "improv", "open mic": "open-mic",
    "comedy": "comedy-show", "drag": "drag-show", "musical": "musical",
    "film": "film-screening", "gallery": "gallery-opening",
    "workshop": "workshop", "market": "market", "festival": "music-festival",
}


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(r"(?<![\w])" + re.escape(keyword) + r"(?![\w])")


_CATEGORY_PATTERNS = [
    (slug, [_keyword_pattern(kw) for kw in keywords])
    for slug, keywords in CATEGORY_KEYWORDS
]
_TAG_PATTERNS = [(_keyword_pattern(kw), tag) for kw, tag in TAG_KEYWORDS.items()]


def normalize_tag(raw: str) -> Optional[str]:
    """Map a raw source tag to its canonical form, or None if unmappable."""
    if not raw:
        return None
    key = _tag_key(raw)
    if key in ALL_TAGS:
        return key
    alias = TAG_ALIASES.get(key)
    if alias in ALL_TAGS:
        return alias
    return None


def normalize_tags(raw_tags: Iterable[str], category: str) -> list[str]:
    """
    Normalize raw tags and keep only those allowed for the category.

    Order of first appearance is preserved and duplicates are removed.
    """
    allowed = set(TAG_TAXONOMY.get(category, ()))
    result: list[str] = []
    for raw in raw_tags:
        tag = normalize_tag(raw)
        if tag and tag in allowed and tag not in result:
            result.append(tag)
    return result


def infer_category(*texts: Optional[str], default: str = DEFAULT_CATEGORY) -> str:
    """Pick a category from free text by keyword, most specific first."""
    search_text = " ".join(t for t in texts if t).lower()
    for slug, patterns in _CATEGORY_PATTERNS:
        if any(p.search(search_text) for p in patterns):
            return slug
    return default


def extract_keyword_tags(*texts: Optional[str]) -> list[str]:
    """Raw tags detected in free text; pass through normalize_tags afterwards."""
    search_text = " ".join(t for t in texts if t).lower()
    return [tag for pattern, tag in _TAG_PATTERNS if pattern.search(search_text)]


def tags_closed_over(tags: Iterable[str], category: str) -> bool:
    """True if every tag belongs to the category's canonical set."""
    allowed = TAG_TAXONOMY.get(category)
    if allowed is None:
        return False
    return all(tag in allowed for tag in tags)
