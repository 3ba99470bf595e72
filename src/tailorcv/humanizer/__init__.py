"""Cover letter critique and rewrite loop."""

from tailorcv.humanizer.config import resolve_cover_letter_humanizer_config
from tailorcv.humanizer.loop import humanize

__all__ = [
    "humanize",
    "resolve_cover_letter_humanizer_config",
]
