import csv
import json
import time
from pathlib import Path

from logging_utils import log_event

REPORT_FIELDS = [
    "session_started_at",
    "session_ended_at",
    "seconds",
    "filter_mode",
    "bpm",
    "fallback_cooldown",
    "baseline_ms",
    "samples",
    "beats_total",
    "beats_bass",
    "beats_mids",
    "beats_overall",
    "intensity_mean",
    "intensity_max",
    "manual_triggers",
    "frames_rendered",
]


class BeatSessionReporter:
    """Persists per-session beat summaries to JSON and CSV reports."""

    def __init__(self, report_dir: Path, max_sessions: int = 200):
        self.report_dir = Path(report_dir)
        self.report_dir.mkdir(parents=True, exist_ok=True)
        self.json_path = self.report_dir / "beat_session_report.json"
        self.csv_path = self.report_dir / "beat_session_report.csv"
        self.max_sessions = max(1, int(max_sessions))

    def load_sessions(self) -> list[dict]:
        if not self.json_path.exists():
            return []
        try:
            with open(self.json_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            log_event("WARNING", "Report", "Existing report unreadable, starting fresh", error=e)
            return []
        sessions = payload.get("sessions", []) if isinstance(payload, dict) else []
        return sessions if isinstance(sessions, list) else []

    def _to_builtin(self, value):
        if isinstance(value, dict):
            return {str(k): self._to_builtin(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._to_builtin(v) for v in value]

        # numpy arrays and scalars
        tolist = getattr(value, "tolist", None)
        if callable(tolist):
            return self._to_builtin(tolist())
        return value

    def save_session(self, session_summary: dict) -> None:
        sessions = self.load_sessions()
        sessions.append(self._to_builtin(session_summary))
        if len(sessions) > self.max_sessions:
            sessions = sessions[-self.max_sessions :]

        payload = {
            "generated_at": time.time(),
            "session_count": len(sessions),
            "latest": sessions[-1],
            "sessions": sessions,
        }

        with open(self.json_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

        with open(self.csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=REPORT_FIELDS)
            writer.writeheader()
            for row in sessions:
                writer.writerow({key: row.get(key, "") for key in REPORT_FIELDS})

        log_event("INFO", "Report", "Session report written", path=self.json_path, sessions=len(sessions))
