"""Theme taxonomy and sentiment lexicon used for prompt hints and offline analysis."""

from typing import Dict, List, Sequence, Tuple

from .constants import ClusterConstants


# label -> (category, keywords)
THEME_TAXONOMY: Dict[str, Tuple[str, List[str]]] = {
    "App Crashes": ("bug", ["crash", "crashes", "crashed", "freeze", "freezes", "frozen", "bug", "error", "broken"]),
    "Slow Performance": ("performance", ["slow", "lag", "laggy", "loading", "performance", "sluggish", "takes forever"]),
    "Login Problems": ("bug", ["login", "log in", "password", "sign in", "locked out", "two-factor", "2fa"]),
    "Billing Issues": ("pricing", ["billing", "charged", "charge", "refund", "invoice", "payment", "subscription"]),
    "Pricing Concerns": ("pricing", ["price", "pricing", "expensive", "cost", "overpriced", "cheap", "value"]),
    "Support Responsiveness": ("customer_service", ["support", "agent", "waited", "no response", "ticket", "hold", "reply"]),
    "Delivery Delays": ("customer_service", ["delivery", "shipping", "late", "package", "arrived", "courier"]),
    "Missing Features": ("feature_request", ["feature", "wish", "would love", "please add", "missing", "integration", "export", "dark mode"]),
    "Ease of Use": ("usability", ["easy", "intuitive", "confusing", "interface", "navigate", "navigation", "design", "layout"]),
}

GENERAL_THEME = ("General Feedback", "other")

POSITIVE_WORDS = [
    "good", "great", "excellent", "amazing", "love", "perfect", "best", "helpful",
    "fast", "easy", "intuitive", "awesome", "fantastic", "happy", "recommend",
]
NEGATIVE_WORDS = [
    "bad", "terrible", "awful", "hate", "worst", "disappointing", "poor", "slow",
    "broken", "crash", "crashes", "useless", "frustrating", "horrible", "angry",
    "refund", "never", "charged",
]


def match_theme(text: str) -> Tuple[str, str, int]:
    """Return (label, category, keyword hits) of the best-matching taxonomy theme."""
    text_lower = text.lower()
    best_label, best_category = GENERAL_THEME
    best_hits = 0
    for label, (category, keywords) in THEME_TAXONOMY.items():
        hits = sum(1 for kw in keywords if kw in text_lower)
        if hits > best_hits:
            best_label, best_category, best_hits = label, category, hits
    return best_label, best_category, best_hits


def lexicon_counts(text: str) -> Tuple[int, int]:
    """Count positive and negative lexicon words in text."""
    words = [w.strip(".,!?;:\"'()") for w in text.lower().split()]
    pos = sum(1 for w in words if w in POSITIVE_WORDS)
    neg = sum(1 for w in words if w in NEGATIVE_WORDS)
    return pos, neg


def allowed_categories(custom_categories: Sequence[str] = ()) -> List[str]:
    """Default categories plus any custom ones, deduplicated, 'other' last."""
    merged = [c for c in ClusterConstants.DEFAULT_CATEGORIES if c != "other"]
    for c in custom_categories:
        c = c.strip().lower().replace(" ", "_")
        if c and c not in merged and c != "other":
            merged.append(c)
    merged.append("other")
    return merged


def theme_hint_for_categories(custom_categories: Sequence[str] = ()) -> str:
    """Generate a hint string for the theme prompt from the allowed categories."""
    categories = allowed_categories(custom_categories)
    examples = "; ".join(list(THEME_TAXONOMY)[:6])
    return (
        f"CATEGORIES={', '.join(categories)}. "
        f"Prefer short, reusable theme labels such as: {examples}. "
        "Use 'other' only when no category fits."
    )
