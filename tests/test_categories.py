import pytest

from errors import ConflictError, NotFoundError, ValidationError
from schemas import CategoryUpdate
from services import (
    DEFAULT_CATEGORIES,
    MAX_CATEGORY_NAME_LENGTH,
    CategoryService,
    normalize_emoji,
)

FAMILY = "\U0001F468\u200d\U0001F469\u200d\U0001F467"
THUMBS_UP_MEDIUM = "\U0001F44D\U0001F3FD"
FLAG_DE = "\U0001F1E9\U0001F1EA"
PARTY = "\U0001F389"


def test_first_listing_seeds_defaults_in_order(backend) -> None:
    categories = CategoryService(backend, "u1").list_all()

    assert [c.name for c in categories] == list(DEFAULT_CATEGORIES)
    assert all(c.emoji is None for c in categories)
    assert all(c.owner_id == "u1" for c in categories)
    assert all(isinstance(c.id, str) and c.id for c in categories)


def test_second_listing_does_not_duplicate_defaults(backend) -> None:
    service = CategoryService(backend, "u1")
    first = service.list_all()
    second = service.list_all()

    assert [c.id for c in second] == [c.id for c in first]


def test_repeated_seeding_skips_existing_names(backend) -> None:
    backend.seed_categories("u1", DEFAULT_CATEGORIES)
    backend.seed_categories("u1", DEFAULT_CATEGORIES)

    names = [c.name for c in CategoryService(backend, "u1").list_all()]
    assert names == list(DEFAULT_CATEGORIES)


def test_create_trims_name_and_rejects_case_insensitive_duplicate(backend) -> None:
    service = CategoryService(backend, "u1")
    seeded = service.list_all()
    assert len(seeded) == 5
    assert any(c.name == "Groceries" for c in seeded)

    transit = service.create("  Transit  ", "\U0001F68C")
    assert transit.name == "Transit"
    assert transit.emoji == "\U0001F68C"

    with pytest.raises(ConflictError, match="Category already exists"):
        service.create("transit", "\U0001F697")


def test_duplicate_of_seeded_default_conflicts(backend) -> None:
    with pytest.raises(ConflictError):
        CategoryService(backend, "u1").create(" GROCERIES ")


def test_same_name_is_allowed_for_different_owners(backend) -> None:
    CategoryService(backend, "u1").create("Travel")
    other = CategoryService(backend, "u2").create("travel")

    assert other.owner_id == "u2"
    assert other.name == "travel"


@pytest.mark.parametrize("name", ["", "   ", None])
def test_blank_name_is_rejected(backend, name) -> None:
    with pytest.raises(ValidationError, match="Category name is required"):
        CategoryService(backend, "u1").create(name)


def test_emoji_is_truncated_to_three_grapheme_clusters(backend) -> None:
    category = CategoryService(backend, "u1").create(
        "Family", FAMILY + THUMBS_UP_MEDIUM + FLAG_DE + PARTY
    )

    assert category.emoji == FAMILY + THUMBS_UP_MEDIUM + FLAG_DE


def test_normalize_emoji() -> None:
    assert normalize_emoji(None) is None
    assert normalize_emoji("") is None
    assert normalize_emoji("   ") is None
    assert normalize_emoji(" " + PARTY + " ") == PARTY
    assert normalize_emoji("abcd") == "abc"
    assert normalize_emoji(FAMILY) == FAMILY


def test_backend_insert_rejects_duplicate_key(backend) -> None:
    backend.insert_category("u1", "Rent", None)

    with pytest.raises(ConflictError):
        backend.insert_category("u1", "rent ", None)


def test_update_changes_only_emoji(backend) -> None:
    service = CategoryService(backend, "u1")
    created = service.create("Coffee", "☕")

    updated = service.update(created.id, CategoryUpdate(emoji=PARTY))
    assert updated.id == created.id
    assert updated.name == "Coffee"
    assert updated.emoji == PARTY
    assert updated.updated_at >= created.updated_at

    cleared = service.update(created.id, CategoryUpdate(emoji=None))
    assert cleared.emoji is None


def test_update_requires_explicit_emoji_key(backend) -> None:
    service = CategoryService(backend, "u1")
    created = service.create("Coffee")

    with pytest.raises(ValidationError, match="Emoji update is required"):
        service.update(created.id, CategoryUpdate.model_validate({}))


def test_update_of_foreign_category_is_not_found(backend) -> None:
    created = CategoryService(backend, "u1").create("Coffee")

    with pytest.raises(NotFoundError):
        CategoryService(backend, "u2").update(created.id, CategoryUpdate(emoji=None))


def test_delete_returns_listed_record_then_not_found(backend) -> None:
    service = CategoryService(backend, "u1")
    created = service.create("Books", "\U0001F4DA")
    listed = next(c for c in service.list_all() if c.id == created.id)

    removed = service.delete(created.id)
    assert removed == listed
    assert all(c.id != created.id for c in service.list_all())

    with pytest.raises(NotFoundError):
        service.delete(created.id)
    with pytest.raises(NotFoundError):
        service.update(created.id, CategoryUpdate(emoji=None))


@pytest.mark.parametrize(
    "bad_id", ["does-not-exist", "999999", "", "-1", "99999999999999999999"]
)
def test_unknown_ids_are_not_found(backend, bad_id) -> None:
    with pytest.raises(NotFoundError):
        CategoryService(backend, "u1").delete(bad_id)


def test_exists_is_case_insensitive_and_trims(backend) -> None:
    service = CategoryService(backend, "u1")
    service.create("ExistsTest")

    assert service.exists("existstest")
    assert service.exists("  EXISTSTEST ")
    assert service.exists("groceries")
    assert not service.exists("NonExistent")
    assert not service.exists("")
    assert not service.exists(None)


def test_deleting_category_keeps_name_on_transactions(backend) -> None:
    from schemas import TransactionIn
    from services import TransactionService

    categories = CategoryService(backend, "u1")
    takeout = next(c for c in categories.list_all() if c.name == "Takeout")
    txn = TransactionService(backend, "u1").create(
        TransactionIn(amount=12.5, category="Takeout")
    )

    categories.delete(takeout.id)

    stored = TransactionService(backend, "u1").list_all()
    assert [t.category for t in stored] == ["Takeout"]
    assert stored[0].id == txn.id


def test_update_with_out_of_range_id_is_not_found(backend) -> None:
    with pytest.raises(NotFoundError):
        CategoryService(backend, "u1").update(
            "99999999999999999999", CategoryUpdate(emoji=PARTY)
        )


def test_name_length_limit_applies_on_every_backend(backend) -> None:
    service = CategoryService(backend, "u1")

    longest = service.create("x" * MAX_CATEGORY_NAME_LENGTH)
    assert len(longest.name) == MAX_CATEGORY_NAME_LENGTH
    with pytest.raises(ValidationError, match="too long"):
        service.create("y" * (MAX_CATEGORY_NAME_LENGTH + 1))
    # Surrounding whitespace does not count.
    padded = service.create("  " + "z" * MAX_CATEGORY_NAME_LENGTH + "  ")
    assert padded.name == "z" * MAX_CATEGORY_NAME_LENGTH


def test_name_whose_lowercase_form_is_longer_is_stored(backend) -> None:
    # Lower-casing U+0130 yields two code points.
    name = "\u0130" * MAX_CATEGORY_NAME_LENGTH
    created = CategoryService(backend, "u1").create(name)

    assert created.name == name
    assert CategoryService(backend, "u1").exists(name.lower())


def test_emoji_with_many_combining_marks_is_kept_whole(backend) -> None:
    # One grapheme cluster, far longer than a handful of code points.
    heavy = "a" + "\u0301" * 80
    service = CategoryService(backend, "u1")
    created = service.create("Zalgo", heavy + PARTY)

    assert created.emoji == heavy + PARTY
    stored = next(c for c in service.list_all() if c.id == created.id)
    assert stored.emoji == heavy + PARTY
