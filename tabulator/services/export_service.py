"""
Leaderboard Export

Delimited-text rendering of an already computed leaderboard.
Formatting only: ranks and composites are written as given.
"""
import csv
import io
from typing import Iterable

from tabulator.services.aggregation_engine import LeaderboardEntry

CSV_HEADER = ["Rank", "Number", "Name", "Total Score"]


def export_leaderboard_csv(entries: Iterable[LeaderboardEntry], delimiter: str = ",") -> str:
    """
    Render leaderboard rows as CSV text.

    Args:
        entries: Ranked leaderboard entries, in display order
        delimiter: Field separator

    Returns:
        CSV text with a header row, composites formatted to 2 decimals
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for entry in entries:
        writer.writerow([entry.rank, entry.number, entry.name, f"{entry.composite:.2f}"])
    return buffer.getvalue()


def export_filename(segment_id: str) -> str:
    return f"results_{segment_id}.csv"
