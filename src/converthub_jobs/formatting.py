"""Human-readable rendering helpers shared by the CLI and the webhook log."""

from __future__ import annotations

from .models import JobState

_SIZE_UNITS = ("B", "KB", "MB", "GB")

STATUS_ICONS = {
    JobState.QUEUED: "⏳",
    JobState.PROCESSING: "🔄",
    JobState.COMPLETED: "✅",
    JobState.FAILED: "❌",
    JobState.CANCELLED: "⚠️",
}


def format_file_size(num_bytes: float) -> str:
    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{round(size, 2):g} {_SIZE_UNITS[unit]}"


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{int(seconds)} seconds"
    if seconds < 3600:
        return f"{round(seconds / 60, 1):g} minutes"
    return f"{round(seconds / 3600, 1):g} hours"


def status_icon(state: JobState) -> str:
    return STATUS_ICONS.get(state, "❓")
