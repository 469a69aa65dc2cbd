"""Parsing helpers for whitespace-delimited command output."""

from __future__ import annotations

import re
from typing import Iterable

_WHITESPACE = re.compile(r"\s+")

# Android's ps prints a state column in data rows that has no header label.
UNLABELED_STATE_TOKEN = "S"


def parse_ps_table_output(output: str, desired_fields: Iterable[str]) -> list[dict[str, str]]:
    """Map each data line of a ps-style table onto the desired header columns.

    The first line is the header. Blank data lines are dropped, short rows
    simply miss the trailing fields and unknown columns are ignored.
    """

    wanted = {field.lower() for field in desired_fields}
    lines = output.split("\n")
    header = lines[0]

    column_mapping: dict[int, str] = {}
    for index, column in enumerate(_WHITESPACE.split(header)):
        name = column.lower()
        if name in wanted:
            column_mapping[index] = name

    records: list[dict[str, str]] = []
    for row in lines[1:]:
        if not row.strip():
            continue
        tokens = _WHITESPACE.split(row)
        record: dict[str, str] = {}
        i = 0
        while i < len(tokens):
            effective_column = i
            if tokens[i] == UNLABELED_STATE_TOKEN and i < len(tokens) - 1:
                i += 1
            name = column_mapping.get(effective_column)
            if name is not None:
                record[name] = tokens[i]
            i += 1
        records.append(record)
    return records
