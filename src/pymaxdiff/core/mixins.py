"""Text formatting shared by every result record's ``summary()``.

Results call these as ``m = ResultSummaryMixin`` helpers, so reports from
the design, estimation and study layers line up column for column.
"""

from __future__ import annotations

from typing import Any, Sequence


class ResultSummaryMixin:
    """Static helpers for 80-column plain-text reports."""

    @staticmethod
    def _format_header(title: str, width: int = 80) -> str:
        """Format a section header.

        Args:
            title: Header title text
            width: Total width of the header

        Returns:
            Formatted header string with border
        """
        border = "=" * width
        padding = (width - len(title)) // 2
        centered_title = " " * padding + title
        return f"{border}\n{centered_title}\n{border}"

    @staticmethod
    def _format_value(value: Any) -> str:
        """Format a scalar for display."""
        if isinstance(value, bool):
            return "Yes" if value else "No"
        if value is None:
            return "N/A"
        if isinstance(value, float):
            if abs(value) < 0.0001 and value != 0:
                return f"{value:.4e}"
            if abs(value) >= 1000:
                return f"{value:,.2f}"
            return f"{value:.4f}"
        return str(value)

    @staticmethod
    def _format_metric(label: str, value: Any, width: int = 40) -> str:
        """Format a metric label-value pair.

        Args:
            label: Metric name
            value: Metric value
            width: Total width for alignment

        Returns:
            Formatted metric string
        """
        formatted_value = ResultSummaryMixin._format_value(value)
        # Dots for visual tracking between label and value
        dots = "." * max(1, width - len(label) - len(formatted_value) - 2)
        return f"  {label} {dots} {formatted_value}"

    @staticmethod
    def _format_status(passed: bool, pass_text: str = "PASSED",
                       fail_text: str = "FAILED") -> str:
        """Format a pass/fail status indicator."""
        return pass_text if passed else fail_text

    @staticmethod
    def _format_footer(computation_time_ms: float, width: int = 80) -> str:
        """Format the report footer with computation time.

        Args:
            computation_time_ms: Time in milliseconds
            width: Total width of the footer

        Returns:
            Formatted footer string
        """
        border = "=" * width
        if computation_time_ms < 1000:
            time_str = f"{computation_time_ms:.2f} ms"
        else:
            time_str = f"{computation_time_ms / 1000:.2f} s"
        return f"\nComputation Time: {time_str}\n{border}"

    @staticmethod
    def _format_section(title: str) -> str:
        """Format a section subheader."""
        return f"\n{title}:\n{'-' * len(title)}"

    @staticmethod
    def _format_list(items: list, max_items: int = 5, item_name: str = "item") -> str:
        """Format a list with optional truncation.

        Args:
            items: List of items to format
            max_items: Maximum items to show before truncating
            item_name: Name for items (singular form)

        Returns:
            Formatted list string
        """
        if not items:
            return "  (none)"

        result = []
        for i, item in enumerate(items[:max_items]):
            result.append(f"  {i + 1}. {item}")

        if len(items) > max_items:
            remaining = len(items) - max_items
            result.append(f"  ... and {remaining} more {item_name}(s)")

        return "\n".join(result)

    @staticmethod
    def _format_table(
        headers: Sequence[str],
        rows: Sequence[Sequence[Any]],
        max_rows: int = 20,
    ) -> str:
        """Format rows as a fixed-width text table.

        The first column is left-aligned, the rest right-aligned.
        """
        if not rows:
            return "  (none)"
        cells = [[ResultSummaryMixin._format_value(v) if not isinstance(v, str) else v
                  for v in row] for row in rows[:max_rows]]
        widths = [len(h) for h in headers]
        for row in cells:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(cell))

        def render(row: Sequence[str]) -> str:
            parts = [row[0].ljust(widths[0])]
            parts.extend(cell.rjust(widths[i + 1]) for i, cell in enumerate(row[1:]))
            return "  " + "  ".join(parts)

        lines = [render(list(headers)), "  " + "  ".join("-" * w for w in widths)]
        lines.extend(render(row) for row in cells)
        if len(rows) > max_rows:
            lines.append(f"  ... and {len(rows) - max_rows} more row(s)")
        return "\n".join(lines)
