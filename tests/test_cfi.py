from shelfsync import cfi
from shelfsync.models import BookNote


def make_note(start: str) -> BookNote:
    return BookNote(cfi=start, start=start, end=start, modified=1)


def test_split_range_cfi_into_points() -> None:
    start, end = cfi.split_cfi("epubcfi(/6/4[ch02]!/4/2,/1:6,/1:11)")

    assert start == "epubcfi(/6/4[ch02]!/4/2/1:6)"
    assert end == "epubcfi(/6/4[ch02]!/4/2/1:11)"


def test_split_point_cfi_returns_same_point_twice() -> None:
    point = "epubcfi(/6/2!/4/1:0)"

    assert cfi.split_cfi(point) == (point, point)


def test_commas_inside_assertions_do_not_split() -> None:
    assert not cfi.is_range("epubcfi(/6/4[id,with,commas]!/4/1:3)")
    assert cfi.is_range("epubcfi(/6/4!/4,/1:0,/1:3)")


def test_compare_orders_by_steps_then_offset() -> None:
    assert cfi.compare("epubcfi(/6/2!/4/2/1:5)", "epubcfi(/6/4!/4/2/1:0)") == -1
    assert cfi.compare("epubcfi(/6/4!/4/10/1:0)", "epubcfi(/6/4!/4/2/1:0)") == 1
    assert cfi.compare("epubcfi(/6/4!/4/2/1:9)", "epubcfi(/6/4!/4/2/1:10)") == -1
    assert cfi.compare("epubcfi(/6/4[a]!/4/2/1:3)", "epubcfi(/6/4!/4/2/1:3)") == 0


def test_compare_uses_range_start_only() -> None:
    short = "epubcfi(/6/4!/4/2,/1:0,/1:3)"
    long = "epubcfi(/6/4!/4/2,/1:0,/3:40)"

    assert cfi.compare(short, long) == 0


def test_missing_operand_sorts_last() -> None:
    note = make_note("epubcfi(/6/2!/4/1:0)")

    assert cfi.compare_notes(None, note) == 1
    assert cfi.compare_notes(note, None) == -1


def test_build_range_uses_deepest_common_parent() -> None:
    value = cfi.build_range((6, 2), "ch1", (4, 2, 1), 3, (4, 4, 1), 7)

    assert value == "epubcfi(/6/2[ch1]!/4,/2/1:3,/4/1:7)"
    assert cfi.split_cfi(value) == (
        "epubcfi(/6/2[ch1]!/4/2/1:3)",
        "epubcfi(/6/2[ch1]!/4/4/1:7)",
    )


def test_sort_notes_by_start() -> None:
    later = make_note("epubcfi(/6/4!/4/2/1:0)")
    earlier = make_note("epubcfi(/6/2!/4/8/1:0)")

    assert cfi.sort_notes([later, earlier]) == [earlier, later]
