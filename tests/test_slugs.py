import pytest

from app.core.errors import SlugUnavailable
from app.features.organizations.slugs import slugify, unique_slug


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Acme Corp!!", "acme-corp"),
        ("  North -- West  ", "north-west"),
        ("Ünïcode Café", "ncode-caf"),
        ("!!!", "organization"),
    ],
)
def test_slugify(name, expected):
    assert slugify(name) == expected


def test_slugify_truncates_without_trailing_hyphen():
    assert slugify("abc def", max_length=4) == "abc"


async def test_unique_slug_appends_counter(make_org, db_session):
    assert await unique_slug(db_session, "acme-corp") == "acme-corp"

    await make_org("Acme Corp", slug="acme-corp")
    assert await unique_slug(db_session, "acme-corp") == "acme-corp-1"

    await make_org("Acme Corp 2", slug="acme-corp-1")
    assert await unique_slug(db_session, "acme-corp") == "acme-corp-2"


async def test_unique_slug_counts_soft_deleted_organizations(make_org, db_session):
    org = await make_org("Gone", slug="gone")
    org.soft_delete()
    await db_session.flush()
    assert await unique_slug(db_session, "gone") == "gone-1"


async def test_unique_slug_gives_up(make_org, db_session):
    await make_org("Busy", slug="busy")
    await make_org("Busy 1", slug="busy-1")
    with pytest.raises(SlugUnavailable):
        await unique_slug(db_session, "busy", max_attempts=1)
