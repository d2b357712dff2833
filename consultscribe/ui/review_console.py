"""Terminal review of the medical terms flagged in a transcript."""

import logging
from typing import Optional, TextIO

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from ..models.validation import FlaggedWord, HighlightLevel, highlight_level
from ..validation.validator import TranscriptionValidator

logger = logging.getLogger(__name__)

COMMANDS = ["a", "e", "s", "p", "n", "b", "all", "q"]

LEVEL_STYLES = {
    HighlightLevel.CRITICAL: "bold red",
    HighlightLevel.WARNING: "yellow",
    HighlightLevel.NORMAL: "white",
    HighlightLevel.CORRECTED: "green",
}


class ReviewConsole:
    """Drives a TranscriptionValidator from the keyboard."""

    def __init__(self, validator: TranscriptionValidator,
                 console: Optional[Console] = None,
                 input_stream: Optional[TextIO] = None):
        self.validator = validator
        self.console = console or Console()
        self.input_stream = input_stream

    def _word_style(self, word: FlaggedWord) -> str:
        level = highlight_level(word.probability, self.validator.state.thresholds, word.has_correction)
        return LEVEL_STYLES[level]

    def render(self) -> None:
        """Show the medical review queue and progress."""
        state = self.validator.state
        progress = state.review_progress
        medical = self.validator.medical_flagged_words

        table = Table(title="🩺 Medical terms to review")
        table.add_column("#", justify="right")
        table.add_column("Time", justify="right")
        table.add_column("Speaker")
        table.add_column("Word")
        table.add_column("Correction")
        table.add_column("Category")
        table.add_column("Confidence", justify="right")
        table.add_column("Status")

        for index, word in enumerate(medical, start=1):
            marker = "▶" if word.id == state.current_word_id else str(index)
            table.add_row(
                marker,
                f"{word.timestamp:.1f}s",
                word.speaker,
                f"[{self._word_style(word)}]{word.word}[/]",
                word.corrected_word or "",
                word.medical_category.value if word.medical_category else "",
                f"{word.probability:.0%}",
                "✅" if word.is_reviewed else "⏳",
            )

        self.console.print(table)
        self.console.print(
            f"Reviewed {progress.reviewed}/{progress.total} flagged words "
            f"({progress.medical_reviewed}/{progress.medical_total} medical) - {progress.percentage}%"
        )
        status = self.validator.validation_status
        if status.message:
            self.console.print(f"⚠️  {status.message}", style="yellow")

    def _show_commands(self) -> None:
        self.console.print(
            "[bold green]a[/bold green] accept  [bold blue]e[/bold blue] edit  "
            "[bold yellow]s[/bold yellow] skip  [bold]p[/bold] play  "
            "[bold]n[/bold]/[bold]b[/bold] next/back  [bold magenta]all[/bold magenta] accept all  "
            "[bold red]q[/bold red] quit"
        )

    def run(self) -> bool:
        """Review until every medical term is handled or the user quits.

        Returns:
            True if the review gate is satisfied
        """
        if self.validator.state.medical_terms_loading:
            self.console.print("⏳ Medical term detection still running", style="blue")

        while not self.validator.validation_status.can_proceed:
            current = self.validator.current_word or self.validator.next_word()
            if current is None:
                break

            self.render()
            self.console.print(
                Panel(f"[bold]{current.word}[/bold] ({current.speaker}, {current.timestamp:.1f}s)",
                      title="Current word")
            )
            self._show_commands()
            command = Prompt.ask("Command", choices=COMMANDS, default="a",
                                 console=self.console, stream=self.input_stream)

            if command == "q":
                logger.info("Review interrupted by user")
                return False
            self._handle(command, current)

        self.console.print("✅ All medical terms reviewed", style="bold green")
        return True

    def _handle(self, command: str, current: FlaggedWord) -> None:
        if command == "a":
            self.validator.accept_word(current.id)
        elif command == "e":
            corrected = Prompt.ask("Correction", default=current.corrected_word or current.word,
                                   console=self.console, stream=self.input_stream)
            self.validator.accept_word(current.id, corrected.strip())
        elif command == "s":
            self.validator.skip_word(current.id)
        elif command == "p":
            self.validator.play_word_audio(current.timestamp)
        elif command == "n":
            self.validator.next_word()
        elif command == "b":
            self.validator.prev_word()
        elif command == "all":
            if Confirm.ask("Accept every remaining word as transcribed?", default=False,
                           console=self.console, stream=self.input_stream):
                self.validator.accept_all()

    def print_summary(self) -> None:
        corrections = self.validator.get_corrections()
        self.console.print(Panel(self.validator.get_final_transcript() or "(empty transcript)",
                                 title="📝 Final transcript"))
        self.console.print(f"{len(corrections)} corrections applied", style="green")
