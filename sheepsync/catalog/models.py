"""
Sheep data model.
"""

from dataclasses import dataclass
from typing import Optional

from ..core.constants import GOLD_GENERATION_THRESHOLD, SHEEP_EXTENSION, STAGING_EXTENSION


@dataclass(frozen=True)
class ContentItem:
    """A sheep (fractal flame animation) as listed by the server catalog."""
    id: str                       # Unique ID within the generation
    generation: int               # 0-9999 = free, 10000+ = gold
    first: int                    # First frame number
    last: int                     # Last frame number
    size: Optional[int] = None    # Expected file size in bytes
    url: Optional[str] = None     # Download locator

    @property
    def full_id(self) -> str:
        """Composite key in the form "generation=id=first=last"."""
        return f"{self.generation}={self.id}={self.first}={self.last}"

    @property
    def is_gold(self) -> bool:
        return self.generation >= GOLD_GENERATION_THRESHOLD

    @property
    def stem(self) -> str:
        return f"{self.generation}_{self.id}_{self.first}_{self.last}"

    @property
    def filename(self) -> str:
        """Cache filename, e.g. "248_12345_0_240.avi"."""
        return self.stem + SHEEP_EXTENSION

    @property
    def staging_filename(self) -> str:
        return self.stem + STAGING_EXTENSION


def full_id_from_filename(filename: str) -> Optional[str]:
    """
    Rebuild a composite key from a cache filename.

    "248_12345_0_240.avi" -> "248=12345=0=240". The id may itself contain
    underscores, so generation is taken from the front and the frame range
    from the back. Returns None for names that don't follow the pattern.
    """
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    parts = stem.split("_")
    if len(parts) < 4:
        return None
    generation, first, last = parts[0], parts[-2], parts[-1]
    sheep_id = "_".join(parts[1:-2])
    if not (generation.isdigit() and first.isdigit() and last.isdigit()) or not sheep_id:
        return None
    return f"{generation}={sheep_id}={first}={last}"
