"""
Decision Protocol: the blocking request/response exchange with the reviewer.

Check passes never read input themselves. They hand an Anomaly to a reviewer
object and get a Decision back. ConsoleReviewer is the production adapter
(line-oriented prompts on stdin/stdout); ScriptedReviewer replays a fixed list
of responses for tests.

Invalid input is never an error: every prompt repeats with a diagnostic until
the answer is one of the accepted tokens or parses as a number.
"""

from collections import deque
from typing import Any, Callable, Iterable, List, Optional, Sequence

import pandas as pd

from qaqc.services.anomalies import (
    NO_NOTE,
    Anomaly,
    Decision,
    Direction,
    Sensitivity,
    parse_number,
)


class ReviewerExhaustedError(RuntimeError):
    """A scripted reviewer was asked more questions than it has answers for."""


def describe_anomaly(anomaly: Anomaly) -> List[str]:
    """Context lines shown to the reviewer before a decision is requested."""
    lines = [
        "-----------------------------------------",
        f"Site: {anomaly.site}",
        f"Column: {anomaly.column}",
        f"Row: {anomaly.row}",
        f"Value: {anomaly.value}",
        f"Issue: {anomaly.issue}",
    ]
    if anomaly.direction != Direction.NONE:
        lines.append(f"Direction: {anomaly.direction.value}")
    stats = anomaly.stats
    if stats is not None:
        lines.append(
            f"Stats - Mean: {stats.mean:.3f}  SD: {stats.std:.3f}  "
            f"Q1: {stats.q1:.3f}  Q3: {stats.q3:.3f}"
        )
    if anomaly.threshold:
        lines.append(f"Thresholds: {anomaly.threshold}")
    return lines


class ConsoleReviewer:
    """Reviewer adapter reading answers line by line."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        print_func: Callable[[str], Any] = print,
    ):
        self.input_func = input_func
        self.print_func = print_func

    # ─────────────────────────────────────────────────────────────────
    # Primitive prompts
    # ─────────────────────────────────────────────────────────────────

    def say(self, message: str = "") -> None:
        self.print_func(message)

    def ask(self, prompt: str) -> str:
        return str(self.input_func(prompt)).strip()

    def ask_choice(self, prompt: str, choices: Sequence[str], error: Optional[str] = None) -> str:
        """Repeat prompt until the lower-cased answer is one of choices."""
        if error is None:
            error = f"Invalid input. Enter {', '.join(choices[:-1])} or {choices[-1]}."
        while True:
            answer = self.ask(prompt).lower()
            if answer in choices:
                return answer
            self.say(error)

    def ask_yes_no(self, prompt: str) -> bool:
        return self.ask_choice(prompt, ("y", "n"), "Please enter y or n.") == "y"

    def ask_number(self, prompt: str) -> float:
        while True:
            number = parse_number(self.ask(prompt))
            if number is not None:
                return number
            self.say("Invalid input. Enter a numeric value.")

    def ask_note(self, prompt: str = "Add a note? (press Enter to skip): ", default: str = "") -> str:
        note = self.ask(prompt)
        return note if note else default

    def ask_member(self, prompt: str, domain: Sequence[str]) -> str:
        while True:
            answer = self.ask(prompt)
            if answer in domain:
                return answer
            self.say(f"Invalid entry. Must be one of: {', '.join(domain)}")

    # ─────────────────────────────────────────────────────────────────
    # Session-level questions
    # ─────────────────────────────────────────────────────────────────

    def ask_data_year(self) -> str:
        while True:
            year = self.ask("Enter the year the data was collected: ")
            if year:
                return year
            self.say("The year cannot be empty.")

    def confirm_skip_dataset(self, keyword: str) -> bool:
        return self.ask_yes_no(f"No file found for '{keyword}'. Skip this dataset? (y/n): ")

    def choose_sensitivity(self, filename: str) -> Sensitivity:
        token = self.ask_choice(
            f"{filename}: flag [e]xtreme only or [m]ild and extreme outliers? (e/m): ",
            ("e", "m"),
            "Invalid input. Enter 'e' for extreme only or 'm' for mild and extreme.",
        )
        return Sensitivity.parse(token)

    def show_summary(self, filename: str, log_frame: pd.DataFrame) -> None:
        self.say("-----------------------------------------")
        self.say(f"File processed: {filename}")
        if log_frame.empty:
            self.say("There were no errors.")
            return
        if self.ask_yes_no("Do you want to see the full summary log? y/n: "):
            self.say(log_frame.to_string(index=False))

    # ─────────────────────────────────────────────────────────────────
    # Anomaly decisions
    # ─────────────────────────────────────────────────────────────────

    def decide(self, anomaly: Anomaly, note_default: str = NO_NOTE) -> Decision:
        """Keep / correct / remove a flagged value, with an optional note."""
        for line in describe_anomaly(anomaly):
            self.say(line)
        action = self.ask_choice(
            "Action? [k]eep / [c]orrect / [r]emove: ",
            ("k", "c", "r"),
            "Invalid input. Enter k, c, or r.",
        )
        value = None
        if action == "c":
            value = self.ask_number("Enter corrected value: ")
        note = self.ask_note("Add a note about this value? (press Enter to skip): ", note_default)
        if action == "r":
            return Decision.remove(note)
        if action == "c":
            return Decision.correct(value, note)
        return Decision.keep(note)

    def supply_missing(self, anomaly: Anomaly, label: str) -> Decision:
        """Enter a replacement for a missing/zero field now, or defer to a manual fix."""
        self.say(
            f"Site: {anomaly.site} {label} is missing or is 0. "
            "You can find the value in the field photo or a previous year file."
        )
        if self.ask_yes_no("Do you want to change it now? [y]/[n]: "):
            return Decision.correct(self.ask_number("Please enter the new value: "))
        self.say("Please correct it manually later.")
        return Decision.keep()

    def confirm_or_replace(self, anomaly: Anomaly, label: str) -> Decision:
        """Confirm a suspicious measurement, replace it, or leave it unchanged."""
        if self.ask_yes_no(
            f"Attention: {anomaly.site} {label} value ({anomaly.value}) seems unusual. "
            "Is it correct? [y/n]: "
        ):
            return Decision.keep(self.ask_note("Enter a note? ([enter] to skip): "), confirmed=True)
        if self.ask_yes_no("Manually enter new value? [y/n]: "):
            value = self.ask_number(f"Enter corrected {label} value: ")
            return Decision.correct(value, self.ask_note("Enter a note? ([enter] to skip): "))
        return Decision.keep(self.ask_note("Enter a note? ([enter] to skip): "))

    def enter_number(self, anomaly: Anomaly, label: str) -> Decision:
        """Replace text found in a numeric field; asks until the answer parses."""
        self.say(f"Site: {anomaly.site} {label} value ('{anomaly.value}') is not a number.")
        return Decision.correct(self.ask_number(f"Enter the numeric {label} value: "))

    def choose_category(self, anomaly: Anomaly, domain: Sequence[str]) -> Decision:
        choice = self.ask_member(
            f"Attention: {anomaly.column} value ('{anomaly.value}') invalid.\n"
            f"Enter a valid class (options: {', '.join(domain)}): ",
            domain,
        )
        return Decision.correct(choice)


class ScriptedReviewer(ConsoleReviewer):
    """
    Reviewer that replays canned answers in order.

    Everything asked and said is recorded in ``transcript``. Running out of
    answers raises ReviewerExhaustedError instead of blocking.
    """

    def __init__(self, responses: Iterable[str] = ()):
        self.responses = deque(responses)
        self.transcript: List[str] = []
        super().__init__(input_func=self._next_response, print_func=self.transcript.append)

    def _next_response(self, prompt: str) -> str:
        self.transcript.append(prompt)
        if not self.responses:
            raise ReviewerExhaustedError(f"No scripted answer left for prompt: {prompt!r}")
        return self.responses.popleft()

    @property
    def remaining(self) -> int:
        return len(self.responses)
