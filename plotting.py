"""Graph and chart rendering for NumStack.

Everything here is plain text so it works in a terminal session and inside
scripts: ``graph`` yields Graphviz DOT source and the chart commands draw
with ASCII characters.
"""

from __future__ import annotations
from typing import List, Sequence

from values import Matrix

BAR_WIDTH = 40
LINE_HEIGHT = 10


def render_dot(adjacency: Matrix) -> str:
    size = max(adjacency.rows, adjacency.cols)
    lines = ["digraph {"]
    for node in range(size):
        lines.append(f'    {node} [ label = "{node}" ]')
    for i, row in enumerate(adjacency.row_items()):
        for j, weight in enumerate(row):
            if weight != 0:
                lines.append(f"    {i} -> {j} [ ]")
    lines.append("}")
    return "\n".join(lines) + "\n"


def _label(value: float) -> str:
    return f"{value:.4g}"


def render_bar_chart(data: Sequence[float], title: str = "Bar Chart - NumStack") -> str:
    lines = [title]
    if not data:
        lines.append("(no data)")
        return "\n".join(lines) + "\n"
    peak = max(abs(x) for x in data) or 1.0
    index_width = len(str(len(data)))
    for index, value in enumerate(data, start=1):
        length = int(round(abs(value) / peak * BAR_WIDTH))
        bar = ("#" if value >= 0 else "=") * length
        lines.append(f"{index:>{index_width}} | {bar:<{BAR_WIDTH}} {_label(value)}")
    return "\n".join(lines) + "\n"


def render_line_chart(data: Sequence[float], title: str = "Line Chart - NumStack") -> str:
    lines = [title]
    if not data:
        lines.append("(no data)")
        return "\n".join(lines) + "\n"
    low, high = min(data), max(data)
    span = (high - low) or 1.0
    grid: List[List[str]] = [[" "] * len(data) for _ in range(LINE_HEIGHT)]
    for column, value in enumerate(data):
        level = int(round((value - low) / span * (LINE_HEIGHT - 1)))
        grid[LINE_HEIGHT - 1 - level][column] = "*"
    top, bottom = _label(high), _label(low)
    margin = max(len(top), len(bottom))
    for row_index, row in enumerate(grid):
        if row_index == 0:
            axis = top
        elif row_index == LINE_HEIGHT - 1:
            axis = bottom
        else:
            axis = ""
        lines.append(f"{axis:>{margin}} |" + "".join(row))
    lines.append(" " * margin + " +" + "-" * len(data))
    return "\n".join(lines) + "\n"
