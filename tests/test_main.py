import pytest
from click.testing import CliRunner

from quiz_client.main import main, parse_choices


@pytest.mark.parametrize("line, expected", [
    ("1", [0]),
    ("1,3", [0, 2]),
    (" 2 , 4 ", [1, 3]),
    ("0", None),
    ("s", None),
    ("1,x", None),
    ("", None),
])
def test_parse_choices(line, expected):
    assert parse_choices(line) == expected


def test_invalid_room_code_is_rejected_before_connecting():
    result = CliRunner().invoke(main, ["AB-12", "Alice"])

    assert result.exit_code == 2
    assert "letters and numbers" in result.output


def test_help_lists_options():
    result = CliRunner().invoke(main, ["--help"])

    assert result.exit_code == 0
    assert "--server" in result.output
    assert "--log-level" in result.output
