# mediasync/utils/table.py
# tiny table printer (stdlib only), shared by the CLI and scripts/
from typing import Sequence, TextIO, Optional
import sys


def _stringify(x) -> str:
    if x is None:
        return ""
    if hasattr(x, "value"):  # enums
        return str(x.value)
    return str(x)


def format_table(headers: Sequence[str], rows: Sequence[Sequence[object]]) -> list[str]:
    cols = len(headers)
    widths = [len(h) for h in headers]
    srows = []
    for row in rows:
        srow = [_stringify(v) for v in row]
        srows.append(srow)
        for i in range(min(cols, len(srow))):
            widths[i] = max(widths[i], len(srow[i]))

    def fmt_row(vals):
        parts = []
        for i, v in enumerate(vals):
            parts.append(v.ljust(widths[i]) if i < cols else v)
        return "  " + " | ".join(parts)

    lines = []
    if headers:
        lines.append(fmt_row(list(headers)))
        lines.append("  " + "-+-".join("-" * w for w in widths))
    for r in srows:
        lines.append(fmt_row(r))
    return lines


def print_table(headers: Sequence[str], rows: Sequence[Sequence[object]], out: Optional[TextIO] = None) -> None:
    out = out or sys.stdout
    for line in format_table(headers, rows):
        print(line, file=out)
