# prompts.py
# Python 3.8/3.9 compatible
"""Console prompts used by the workflow in interactive mode."""

import getpass
from typing import List, Optional


class PromptCancelled(Exception):
    pass


class Prompter:
    def ask(self, text: str, default: Optional[str] = None) -> str:
        suffix = f" [{default}]" if default else ""
        try:
            answer = input(f"{text}{suffix}: ").strip()
        except EOFError as e:
            raise PromptCancelled("input closed") from e
        return answer or (default or "")

    def ask_secret(self, text: str) -> str:
        try:
            return getpass.getpass(f"{text}: ")
        except EOFError as e:
            raise PromptCancelled("input closed") from e

    def confirm(self, text: str, default: bool = False) -> bool:
        hint = "Y/n" if default else "y/N"
        while True:
            answer = self.ask(f"{text} ({hint})").lower()
            if not answer:
                return default
            if answer in ("y", "yes"):
                return True
            if answer in ("n", "no"):
                return False
            print("Please answer y or n.")

    def choose(self, title: str, options: List[str]) -> int:
        """Show a numbered list and return the 0-based index picked."""
        print(f"\n{title}")
        for i, opt in enumerate(options, start=1):
            print(f"  {i}. {opt}")
        while True:
            answer = self.ask(f"Select 1-{len(options)}")
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                return int(answer) - 1
            print(f"Enter a number between 1 and {len(options)}.")
