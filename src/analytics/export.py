"""
CSV export of expense lists.

Fields go through the csv module, so descriptions containing commas,
quotes or newlines survive a spreadsheet import.
"""

import csv
import io
from datetime import date
from typing import Iterable, Optional

from src.config import get_settings
from src.models.expense import Expense


CSV_HEADER = ("Date", "Category", "Description", "Amount")


def expenses_to_csv(expenses: Iterable[Expense], date_format: Optional[str] = None) -> str:
    """
    Render expenses as CSV text, one row per expense in the given order.

    Args:
        expenses: Records to write
        date_format: strftime pattern for the Date column (default from settings)
    """
    date_format = date_format or get_settings().app.csv_date_format
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for expense in expenses:
        writer.writerow([
            expense.date.strftime(date_format),
            expense.category.value,
            expense.description,
            f"{expense.amount:.2f}",
        ])
    return buffer.getvalue()


def export_filename(as_of: date, extension: str = "csv") -> str:
    """Download name, e.g. expenses-2024-03-01.csv"""
    return f"{get_settings().app.export_filename_prefix}-{as_of.isoformat()}.{extension}"
