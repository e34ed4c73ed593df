import pytest

from localspotlight.services.pagination import MAX_PER_PAGE, paginate


@pytest.mark.parametrize("total, expected_pages", [(0, 0), (1, 1), (20, 1), (21, 2), (100, 5)])
def test_total_pages_rounds_up(total, expected_pages):
    assert paginate(total, page=1, per_page=20).total_pages == expected_pages


def test_offset_and_inclusive_range():
    """Page 3 of 20 covers rows 40..59."""
    page = paginate(100, page=3, per_page=20)
    assert page.offset == 40
    assert page.range_end == 59
    assert page.has_prev
    assert page.has_next


def test_invalid_values_are_clamped():
    page = paginate(50, page="abc", per_page=10_000)
    assert page.page == 1
    assert page.per_page == MAX_PER_PAGE
    assert not page.has_prev

    page = paginate(50, page=-4, per_page=0)
    assert page.page == 1
    assert page.per_page == 1


def test_last_page_has_no_next():
    page = paginate(21, page=2, per_page=20)
    assert page.has_prev
    assert not page.has_next
