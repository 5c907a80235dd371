"""Selects the most recently published OS image of a family."""

from __future__ import annotations

import logging
import re
from fnmatch import fnmatchcase

from ..exceptions import ResolutionError
from ..models import ImageReference

logger = logging.getLogger(__name__)

_DIGITS = re.compile(r"(\d+)")


def _published_key(image: ImageReference) -> tuple:
    """Natural sort key: numeric runs compare as numbers ('2.10' > '2.9')."""
    parts = _DIGITS.split(image.published_date)
    return tuple((0, int(p)) if p.isdigit() else (1, p.lower()) for p in parts if p)


def _matches(value: str, pattern: str) -> bool:
    return fnmatchcase(value.lower(), pattern.lower())


def resolve_latest_image(
    images: list[ImageReference],
    family_filter: str,
    only_from_publisher: str | None = None,
    log: logging.Logger = logger,
) -> ImageReference:
    """Return the latest image whose family matches ``family_filter``.

    Raises ResolutionError when nothing matches.
    """
    candidates = [img for img in images if _matches(img.family, family_filter)]
    if only_from_publisher:
        candidates = [img for img in candidates if _matches(img.publisher, only_from_publisher)]

    # One entry per family: its latest, the first seen on ties
    per_family: dict[str, ImageReference] = {}
    for img in candidates:
        key = img.family.lower()
        current = per_family.get(key)
        if current is None or _published_key(img) > _published_key(current):
            per_family[key] = img

    if not per_family:
        publisher_note = f" from publisher '{only_from_publisher}'" if only_from_publisher else ""
        raise ResolutionError(f"No image matches family filter '{family_filter}'{publisher_note}")

    latest = max(per_family.values(), key=_published_key)
    log.info(
        "Resolved image %s (family %s, published %s)",
        latest.image_name, latest.family, latest.published_date,
    )
    return latest
