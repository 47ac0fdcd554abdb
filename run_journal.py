# run_journal.py
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import urlparse

from plan_schema import NavigateStep, Plan


@dataclass
class JournalEntry:
    step_index: int
    sentence: str
    timestamp: datetime
    screenshot_path: Optional[Path] = None


def _slugify(text: str, max_tokens: int = 4) -> str:
    tokens = [tok for tok in re.split(r"\W+", text.lower()) if tok]
    if not tokens:
        return "autofill"
    return "_".join(tokens[:max_tokens])


def _plan_host(plan: Plan) -> str:
    for step in plan.steps:
        if isinstance(step, NavigateStep) and step.url:
            host = urlparse(step.url).hostname or ""
            return host[4:] if host.startswith("www.") else host
    return ""


class RunJournal:
    """Writes one directory per run: ``steps.txt`` plus any screenshots."""

    def __init__(self, output_dir: Path | str):
        self.output_dir = Path(output_dir)
        self._entries: List[JournalEntry] = []
        self._warnings: List[str] = []
        self._run_id: str = ""
        self._host: str = ""
        self._total_steps = 0
        self._run_dir: Optional[Path] = None
        self._start_time: Optional[datetime] = None
        self._active = False
        self._capture_counter = 0

    @property
    def run_dir(self) -> Optional[Path]:
        return self._run_dir

    @property
    def entries(self) -> List[JournalEntry]:
        return list(self._entries)

    def start(self, run_id: str, plan: Plan) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._entries.clear()
        self._run_id = run_id
        self._host = _plan_host(plan)
        self._warnings = list(plan.warnings)
        if plan.captcha_likely:
            self._warnings.append("CAPTCHA likely on this form")
        self._total_steps = len(plan.steps)
        self._start_time = datetime.now(UTC)
        slug = _slugify(f"{self._host} {run_id}", max_tokens=6)
        timestamp = self._start_time.strftime("%Y%m%d-%H%M%S")
        self._run_dir = self.output_dir / f"run_{slug}_{timestamp}"
        self._run_dir.mkdir(parents=True, exist_ok=True)
        self._active = True
        self._capture_counter = 0
        return self._run_dir

    def record_step(self, index: int, sentence: str, timestamp: Optional[datetime] = None) -> None:
        if not self._active:
            return
        safe_sentence = sentence.strip() or "Step recorded."
        self._entries.append(
            JournalEntry(step_index=index, sentence=safe_sentence, timestamp=timestamp or datetime.now(UTC))
        )

    async def capture(self, page: Any, label: str) -> Optional[Path]:
        """Save a full-page screenshot into the run directory."""
        if not self._active or not self._run_dir:
            return None
        self._capture_counter += 1
        dest_path = self._run_dir / f"capture{self._capture_counter:02d}_{_slugify(label)}.png"
        try:
            await page.screenshot(path=str(dest_path), full_page=True)
        except Exception as exc:
            print(f"  • Failed to capture screenshot for run journal: {exc}")
            return None
        self._entries.append(
            JournalEntry(
                step_index=self._entries[-1].step_index if self._entries else -1,
                sentence=label.strip() or "Screenshot captured.",
                timestamp=datetime.now(UTC),
                screenshot_path=dest_path,
            )
        )
        return dest_path

    def finish(self, state: str, message: str) -> Optional[Path]:
        if not self._active or not self._run_dir:
            return None
        try:
            self._write_steps_file(state, message)
        except OSError as exc:
            print(f"  • Failed to write run journal: {exc}")
            return None
        finally:
            self._active = False
        print(f"🗂️ Run journal saved in {self._run_dir}")
        return self._run_dir

    def _write_steps_file(self, state: str, message: str) -> None:
        lines: List[str] = [
            f"Run: {self._run_id}",
            f"Lender: {self._host or 'unknown'}",
            f"Planned steps: {self._total_steps}",
        ]
        if self._start_time:
            lines.append(f"Started: {self._start_time.isoformat()}")
        if self._warnings:
            lines.append("")
            lines.append("Warnings:")
            for warning in self._warnings:
                lines.append(f"  - {warning}")
        lines.append("")
        lines.append("Steps:")
        if not self._entries:
            lines.append("  No steps were executed.")
        for entry in self._entries:
            prefix = f"  Step {entry.step_index + 1}" if entry.step_index >= 0 else "  Run"
            lines.append(f"{prefix}: {entry.sentence}")
            if entry.screenshot_path is not None:
                lines.append(f"    Screenshot: {entry.screenshot_path.name}")
            lines.append(f"    At: {entry.timestamp.isoformat()}")
        lines.append("")
        lines.append(f"Outcome: {state}")
        if message:
            lines.append(f"Message: {message}")

        content = "\n".join(lines).rstrip() + "\n"
        (self._run_dir / "steps.txt").write_text(content, encoding="utf-8")
