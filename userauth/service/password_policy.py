"""Password complexity rules.

Each rule is an independent predicate tagged with a stable id; the policy
reports every failing id so callers can tell the user exactly what to fix.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Tuple

SYMBOLS = "~`! @#$%^&*()_-+={[}]|:;\"'<,>.?/"

MIN_MAX_LENGTH = "min_max_length"
LETTER_CASING = "letter_casing"
SYMBOL_COUNT = "symbols"

PasswordRule = Tuple[str, Callable[[str], bool]]


def length_between(password: str, min_length: int, max_length: int) -> bool:
    return min_length <= len(password) <= max_length


def count_uppercase(password: str) -> int:
    return sum(1 for c in password if c.isupper())


def count_symbols(password: str) -> int:
    return sum(1 for c in password if c in SYMBOLS)


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 5
    max_length: int = 12
    min_uppercase: int = 1
    min_symbols: int = 1

    @classmethod
    def from_settings(cls, settings) -> "PasswordPolicy":
        return cls(
            min_length=settings.password_min_length,
            max_length=settings.password_max_length,
            min_uppercase=settings.password_min_uppercase,
            min_symbols=settings.password_min_symbols,
        )

    def rules(self) -> Tuple[PasswordRule, ...]:
        return (
            (
                MIN_MAX_LENGTH,
                lambda pw: length_between(pw, self.min_length, self.max_length),
            ),
            (LETTER_CASING, lambda pw: count_uppercase(pw) >= self.min_uppercase),
            (SYMBOL_COUNT, lambda pw: count_symbols(pw) >= self.min_symbols),
        )

    def validate(self, password: str) -> List[str]:
        """Return the ids of every rule ``password`` fails, in rule order."""
        return [rule_id for rule_id, predicate in self.rules() if not predicate(password)]

    def describe(self, rule_id: str) -> str:
        if rule_id == MIN_MAX_LENGTH:
            return (
                f"password must be between {self.min_length} and "
                f"{self.max_length} characters"
            )
        if rule_id == LETTER_CASING:
            return f"password must contain at least {self.min_uppercase} uppercase letter(s)"
        if rule_id == SYMBOL_COUNT:
            return f"password must contain at least {self.min_symbols} symbol(s)"
        return rule_id

    def violations(self, password: str) -> List[dict]:
        return [
            {"field": "password", "rule": rule_id, "message": self.describe(rule_id)}
            for rule_id in self.validate(password)
        ]
