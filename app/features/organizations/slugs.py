"""
URL-safe organization slugs.
"""
import re
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import SlugUnavailable
from app.features.organizations.models import Organization


_INVALID_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")

FALLBACK_SLUG = "organization"


def slugify(name: str, max_length: Optional[int] = None) -> str:
    """
    Derive a slug from an organization name.

    >>> slugify("Acme Corp!!")
    'acme-corp'
    """
    max_length = max_length or config.SLUG_MAX_LENGTH
    slug = _INVALID_CHARS.sub("", (name or "").lower())
    slug = _WHITESPACE.sub("-", slug.strip())
    slug = _HYPHENS.sub("-", slug).strip("-")
    slug = slug[:max_length].strip("-")
    return slug or FALLBACK_SLUG


async def slug_exists(db: AsyncSession, slug: str) -> bool:
    # Soft-deleted organizations still hold their slug
    result = await db.execute(select(Organization.id).where(Organization.slug == slug).limit(1))
    return result.scalar_one_or_none() is not None


async def unique_slug(db: AsyncSession, base: str, max_attempts: Optional[int] = None) -> str:
    """
    Return ``base`` or the first free ``base-N`` (N = 1, 2, ...).

    Raises:
        SlugUnavailable: if no free slug is found within max_attempts
    """
    max_attempts = max_attempts or config.SLUG_MAX_ATTEMPTS
    if not await slug_exists(db, base):
        return base
    for counter in range(1, max_attempts + 1):
        suffix = f"-{counter}"
        candidate = f"{base[:config.SLUG_MAX_LENGTH - len(suffix)].rstrip('-')}{suffix}"
        if not await slug_exists(db, candidate):
            return candidate
    raise SlugUnavailable(f"No free slug for '{base}' after {max_attempts} attempts", slug=base)
