from __future__ import annotations

from droidbridge.tables import parse_ps_table_output

FIELDS = ("user", "pid", "name")


def test_parses_desired_columns() -> None:
    output = "USER PID NAME\nroot  123  com.example.app"

    records = parse_ps_table_output(output, FIELDS)

    assert records == [{"user": "root", "pid": "123", "name": "com.example.app"}]


def test_skips_unlabeled_state_column() -> None:
    output = "USER PID NAME\nroot 123 S com.example.app"

    records = parse_ps_table_output(output, FIELDS)

    assert records == [{"user": "root", "pid": "123", "name": "com.example.app"}]


def test_android_ps_output_maps_name_past_state_column() -> None:
    output = "\n".join(
        [
            "USER      PID   PPID  VSIZE  RSS   WCHAN            PC  NAME",
            "root      1     0     8904   788   SyS_epoll_ 0000000000 S /init",
            "u0_a52    2410  1391  1561604 60720 SyS_epoll_ 0000000000 S com.android.phone",
        ]
    )

    records = parse_ps_table_output(output, FIELDS)

    assert records == [
        {"user": "root", "pid": "1", "name": "/init"},
        {"user": "u0_a52", "pid": "2410", "name": "com.android.phone"},
    ]


def test_trailing_state_token_is_kept_as_value() -> None:
    output = "USER PID NAME\nroot 7 S"

    records = parse_ps_table_output(output, FIELDS)

    assert records == [{"user": "root", "pid": "7", "name": "S"}]


def test_blank_lines_are_dropped_and_order_kept() -> None:
    output = "USER PID NAME\n\nroot 1 init\n   \nshell 2 sh\n"

    records = parse_ps_table_output(output, FIELDS)

    assert [record["pid"] for record in records] == ["1", "2"]


def test_fields_missing_from_header_never_appear() -> None:
    output = "USER NAME\nroot init"

    records = parse_ps_table_output(output, FIELDS)

    assert records == [{"user": "root", "name": "init"}]
    assert all("pid" not in record for record in records)


def test_short_rows_omit_trailing_fields() -> None:
    output = "USER PID NAME\nroot 1"

    records = parse_ps_table_output(output, FIELDS)

    assert records == [{"user": "root", "pid": "1"}]


def test_unrecognised_header_yields_empty_records() -> None:
    output = "FOO BAR\n1 2\n3 4"

    records = parse_ps_table_output(output, FIELDS)

    assert records == [{}, {}]


def test_desired_fields_match_case_insensitively() -> None:
    output = "user Pid NAME\nroot 1 init"

    records = parse_ps_table_output(output, ["USER", "pid"])

    assert records == [{"user": "root", "pid": "1"}]
