"""
Heuristics for placing imported images: path clues, tree type and name,
smart tags, and random names for auto-created trees.
"""

import random
from dataclasses import dataclass, field
from datetime import date
from pathlib import PurePath
from typing import Iterable, Optional

from .types import AnalysisResult, validate_tag


REFERENCE_KEYWORDS = (
    "reference", "ref", "inspiration", "mood", "style", "concept",
    "sketch", "wireframe", "mockup", "example", "sample",
)

CREATIVE_KEYWORDS = (
    "final", "output", "result", "generated", "created", "artwork",
    "piece", "composition", "design",
)

SOURCE_EXTENSIONS = (".psd", ".ai", ".sketch", ".fig")

# First entry is the name used for auto-created trees of each purpose
BASE_TREE_NAMES = {
    "reference": ("References", "Inspiration", "Style Guide", "Mood Board"),
    "creative": ("Main Work", "Creative Output", "Final Designs", "Artwork"),
    "variation": ("Variations", "Iterations", "Alternatives", "Options"),
    "experiment": ("Experiments", "Tests", "Drafts", "Work in Progress"),
}

MAX_OBJECT_TAGS = 5

TREE_NAMES = (
    "Oak", "Pine", "Maple", "Birch", "Cedar", "Willow", "Elm", "Ash",
    "Cherry", "Apple", "Magnolia", "Redwood", "Sequoia", "Spruce", "Fir",
    "Poplar", "Sycamore", "Walnut", "Hickory", "Beech", "Chestnut", "Cypress",
    "Juniper", "Larch", "Mahogany", "Teak", "Bamboo", "Palm", "Eucalyptus",
    "Acacia", "Olive", "Fig", "Peach", "Plum", "Pear", "Lemon", "Orange",
    "Dogwood", "Hawthorn", "Elder", "Rowan", "Yew", "Holly", "Ivy",
    "Jasmine", "Lavender", "Rose", "Lilac", "Sage", "Thyme", "Mint",
    "Baobab", "Banyan", "Mangrove", "Cottonwood", "Ironwood", "Ebony",
)

ADJECTIVES = (
    "Ancient", "Majestic", "Towering", "Graceful", "Sturdy", "Noble", "Wise",
    "Gentle", "Strong", "Vibrant", "Serene", "Peaceful", "Mighty", "Grand",
    "Elegant", "Proud", "Resilient", "Flourishing", "Radiant", "Golden",
    "Silver", "Crimson", "Emerald", "Azure", "Amber", "Ruby", "Sapphire",
    "Mystical", "Enchanted", "Sacred", "Eternal", "Whispering", "Dancing",
    "Swaying", "Blooming", "Glowing", "Shimmering", "Twisted", "Gnarled",
    "Slender", "Delicate", "Robust", "Hardy", "Tender", "Rustic", "Wild",
    "Brave", "Bold", "Quiet", "Silent", "Calm", "Stormy", "Sunny", "Misty",
    "Luminous", "Sparkling", "Gleaming", "Vivid", "Pale", "Weathered",
)


@dataclass
class PathClues:
    """What a file path suggests about an imported image."""
    is_reference: bool = False
    suggested_tags: list[str] = field(default_factory=list)
    category: str = "general"  # general | source | draft
    confidence: float = 0.0


def analyze_import_path(path: str) -> PathClues:
    """Scan a path for reference, creative, source-file and draft markers."""
    p = PurePath(path)
    full = str(path).lower()
    filename = p.name.lower()
    dirname = str(p.parent).lower()

    clues = PathClues()
    tags: list[str] = []

    for keyword in REFERENCE_KEYWORDS:
        if keyword in full:
            clues.is_reference = True
            clues.confidence += 0.3
            tags.append(keyword)

    for keyword in CREATIVE_KEYWORDS:
        if keyword in full:
            clues.confidence += 0.2
            tags.append(keyword)

    if "reference" in dirname or "inspiration" in dirname:
        clues.is_reference = True
        clues.confidence += 0.4
        tags.append("reference")

    if p.suffix.lower() in SOURCE_EXTENSIONS:
        tags.append("source-file")
        clues.category = "source"
        clues.confidence += 0.2

    if "screenshot" in filename or "screen_shot" in filename:
        clues.is_reference = True
        tags.append("screenshot")
        clues.confidence += 0.3

    if "wip" in filename or "work-in-progress" in filename:
        tags.append("wip")
        clues.category = "draft"

    clues.suggested_tags = list(dict.fromkeys(tags))
    clues.confidence = min(clues.confidence, 1.0)
    return clues


def determine_tree_purpose(clues: PathClues, import_method: str = "root",
                           purpose: Optional[str] = None) -> str:
    """Purpose for a tree auto-created to hold an import."""
    if purpose:
        return purpose
    if import_method == "editing-base":
        return "creative"
    if clues.is_reference:
        return "reference"
    if clues.category == "draft" or "wip" in clues.suggested_tags:
        return "experiment"
    return "reference" if clues.confidence > 0.5 else "creative"


def import_tree_name(clues: PathClues, purpose: str) -> str:
    if clues.category == "source":
        return "Source Files"
    if "screenshot" in clues.suggested_tags:
        return "Screenshots & References"
    return BASE_TREE_NAMES[purpose][0]


def _slug(text: str) -> str:
    return "-".join(text.lower().split())


def smart_tags(analysis: Optional[AnalysisResult], path: str,
               today: Optional[date] = None) -> list[str]:
    """
    Tags derived from an AI analysis and the file name.

    Up to five detected objects, the style and mood, the file extension,
    and the import date.
    """
    tags: list[str] = []
    if analysis is not None:
        tags.extend(o.strip() for o in analysis.detected_objects[:MAX_OBJECT_TAGS])
        if analysis.style:
            tags.append(_slug(analysis.style))
        if analysis.mood:
            tags.append(_slug(analysis.mood))

    ext = PurePath(path).suffix[1:].lower()
    if ext:
        tags.append(f"{ext}-file")

    tags.append(f"imported-{(today or date.today()).isoformat()}")
    valid = []
    for tag in tags:
        try:
            valid.append(validate_tag(tag))
        except ValueError:
            continue  # model output that cannot be a tag
    return valid


def infer_purpose_note(path: str) -> Optional[str]:
    """A short note on what an imported file is probably for."""
    p = PurePath(path)
    full = str(path).lower()
    stem = p.stem.lower()

    if "reference" in full or "inspiration" in full:
        return "Reference material for creative work"
    if "mockup" in full or "wireframe" in full:
        return "Design mockup or wireframe"
    if "final" in full or "output" in full:
        return "Final output or completed work"
    if "screenshot" in stem:
        return "Screenshot for reference"
    if "concept" in full or "sketch" in full:
        return "Concept or sketch work"
    return None


def random_tree_name(existing: Iterable[str] = (), rng: Optional[random.Random] = None,
                     max_attempts: int = 100) -> str:
    """
    An "Adjective Tree" name not already in ``existing``.

    After ``max_attempts`` collisions a counter is appended instead.
    """
    rng = rng or random.Random()
    taken = set(existing)
    name = ""
    for _ in range(max_attempts):
        name = f"{rng.choice(ADJECTIVES)} {rng.choice(TREE_NAMES)}"
        if name not in taken:
            return name
    counter = 1
    while f"{name} {counter}" in taken:
        counter += 1
    return f"{name} {counter}"
