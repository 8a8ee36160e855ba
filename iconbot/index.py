"""Editing of the overlay's grayscale icon map.

None of the usual XML libraries round-trip the file with its formatting intact,
so the map is edited as plain lines: the entry block sits between a fixed
header and a one-line footer and is kept sorted case-insensitively.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class IndexEntry:
    drawable_name: str
    package_name: str

    @property
    def line(self) -> str:
        return f'    <icon drawable="@drawable/{self.drawable_name}" package="{self.package_name}" />'


def insert_entry(text: str, entry: IndexEntry, header_lines: int = 1) -> str:
    """Return ``text`` with ``entry`` added to the sorted entry block.

    The first ``header_lines`` lines and the last line are never moved.
    """
    lines = text.splitlines()
    if len(lines) < header_lines + 1:
        raise ValueError(
            f"index file has {len(lines)} lines, expected a {header_lines}-line header and a footer"
        )

    header = lines[:header_lines]
    body = lines[header_lines:-1]
    footer = lines[-1]

    body.insert(0, entry.line)
    body.sort(key=str.lower)

    out = "\n".join([*header, *body, footer])
    if text.endswith("\n"):
        out += "\n"
    return out
