import pytest

from lfverifier.environment import get_limited_environment


@pytest.mark.parametrize(
    "original, kept, expected",
    [
        (["A=B", "C=D"], [], ["TZ=UTC"]),
        (["A=B", "C=D"], ["A"], ["A=B", "TZ=UTC"]),
        (["A=B", "C=D", "E=F"], ["A", "E"], ["A=B", "E=F", "TZ=UTC"]),
        (["TZ=Europe/Stockholm"], ["TZ"], ["TZ=Europe/Stockholm"]),
        (["A=B"], ["UNDEFINED_KEEPER"], ["TZ=UTC"]),
    ],
)
def test_get_limited_environment(original, kept, expected):
    assert get_limited_environment(original, kept) == expected


def test_values_with_equals_signs_are_kept_whole():
    assert get_limited_environment(["OPTS=-Da=b"], ["OPTS"]) == ["OPTS=-Da=b", "TZ=UTC"]