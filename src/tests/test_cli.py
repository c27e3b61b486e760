"""Tests for command line argument parsing."""

from datetime import date

import pytest

from bakehouse.main import build_parser


def test_generate_slots_arguments():
    args = build_parser().parse_args(
        [
            "generate-slots",
            "--start", "2030-01-07",
            "--end", "2030-01-20",
            "--weekdays", "4,5",
            "--location", "1",
            "--location", "2",
            "--capacity", "24",
        ]
    )

    assert args.start == date(2030, 1, 7)
    assert args.weekdays == [4, 5]
    assert args.location == [1, 2]
    assert args.cutoff_hours is None


@pytest.mark.parametrize(
    "argv",
    [
        ["generate-slots", "--start", "soon", "--end", "2030-01-20", "--weekdays", "4",
         "--location", "1", "--capacity", "24"],
        ["generate-slots", "--start", "2030-01-07", "--end", "2030-01-20", "--weekdays", "fri",
         "--location", "1", "--capacity", "24"],
        ["sync", "--once", "--loop"],
        [],
    ],
)
def test_invalid_arguments(argv):
    with pytest.raises(SystemExit):
        build_parser().parse_args(argv)


def test_sync_defaults_to_single_pass():
    args = build_parser().parse_args(["sync"])
    assert args.loop is False


def test_init_db_reset_flag():
    assert build_parser().parse_args(["init-db", "--reset"]).reset is True
    assert build_parser().parse_args(["init-db"]).reset is False
