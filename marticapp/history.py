"""Word counting, CSV export and usage analytics over the run history."""

from __future__ import annotations

import csv
import io
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .models import Action, HistoryEntry, Stats

TRANSCRIPTION_LABEL = "Smart Transcription"
CSV_HEADER = "Fecha,Tipo,Salida"

BOOK_MILESTONES = (
    (381000, 'With {words} words you have written more than the first part of "Don Quixote".'),
    (206000, 'Impressive! You have transcribed more words than "Moby Dick" (over {words}).'),
    (145000, 'With {words} words you have passed the length of "One Hundred Years of Solitude".'),
    (77000, 'Congratulations! You have written more words than "Harry Potter and the Philosopher\'s Stone" ({words} so far).'),
    (15000, 'Your word count already beats "The Little Prince" (over {words} words!).'),
    (3000, 'You have written the equivalent of "Twenty Love Poems and a Song of Despair" (about {words} words!).'),
)
NO_MILESTONE = "Keep writing to unlock your first literary milestone!"


def word_count(text: str) -> int:
    return len(text.split())


def history_label(action: Action, prompt_name: str = "") -> str:
    if action is Action.TRANSCRIBE:
        return TRANSCRIPTION_LABEL
    return f"Processing ({prompt_name})"


def is_transcription(entry_type: str) -> bool:
    return entry_type.startswith(TRANSCRIPTION_LABEL)


def usage_category(entry_type: str) -> str:
    """Category code expected by the usage report endpoint."""

    return "A" if is_transcription(entry_type) else "B"


def parse_date(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _display_date(value: str) -> str:
    parsed = parse_date(value)
    if parsed is None:
        return value
    return parsed.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def export_csv(history: Iterable[HistoryEntry]) -> str:
    buffer = io.StringIO()
    buffer.write(CSV_HEADER + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for entry in history:
        writer.writerow([_display_date(entry.date), entry.type or "", entry.output or ""])
    return buffer.getvalue()


def write_history_csv(history: Sequence[HistoryEntry], path: Path) -> None:
    path.write_text(export_csv(history), encoding="utf-8")


def fun_fact(total_words: int) -> str:
    for threshold, template in BOOK_MILESTONES:
        if total_words >= threshold:
            return template.format(words=f"{total_words:,}")
    return NO_MILESTONE


@dataclass(slots=True)
class Analytics:
    uses_this_week: int
    total_words: int
    transcription_words: int
    processing_words: int
    average_words: int
    days_with_app: int
    fun_fact: str


def compute_analytics(history: List[HistoryEntry], stats: Stats, now: Optional[datetime] = None) -> Analytics:
    now = now or datetime.now(timezone.utc)
    # Seven days back, from local midnight.
    week_start = (now.astimezone() - timedelta(days=7)).replace(hour=0, minute=0, second=0, microsecond=0)

    uses_this_week = 0
    total = transcription = processing = 0
    for entry in history:
        date = parse_date(entry.date)
        if date is not None and date >= week_start:
            uses_this_week += 1
        words = entry.word_count or 0
        total += words
        if is_transcription(entry.type):
            transcription += words
        else:
            processing += words

    first_use = parse_date(stats.first_use_date) or now
    days = max(1, math.ceil((now - first_use).total_seconds() / 86400))
    return Analytics(
        uses_this_week=uses_this_week,
        total_words=total,
        transcription_words=transcription,
        processing_words=processing,
        average_words=round(total / len(history)) if history else 0,
        days_with_app=days,
        fun_fact=fun_fact(total),
    )
