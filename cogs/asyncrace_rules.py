from __future__ import annotations

from typing import Dict, List, NamedTuple, Optional

from .asyncrace_models import Submission
from .asyncrace_shared import MAX_OPTION_TEXT_LEN, MAX_STORED_INT, GameTag, MalformedSubmission


class Extra(NamedTuple):
    score: Optional[int] = None
    option_number: Optional[int] = None
    option_text: Optional[str] = None


class GameRules:
    """Per-game handling of the tokens that follow the time in a submission."""

    def parse_extra(self, tokens: List[str]) -> Extra:
        raise NotImplementedError

    def validate_score(self, score: int) -> int:
        raise NotImplementedError

    def format_extra(self, submission: Submission) -> Optional[str]:
        raise NotImplementedError


class CollectionRules(GameRules):
    def __init__(self, label: str, limit: int, percent: bool = False):
        self.label = label
        self.limit = limit
        self.percent = percent

    def parse_extra(self, tokens: List[str]) -> Extra:
        if not tokens:
            raise MalformedSubmission(f"{self.label} submissions must include a collection rate.")
        if len(tokens) > 1:
            raise MalformedSubmission(f"{self.label} submissions take a time and a collection rate only.")
        raw = tokens[0].rstrip("%")
        if "/" in raw:
            raw = raw.split("/", 1)[0]
        try:
            value = int(raw)
        except ValueError:
            raise MalformedSubmission(f"`{tokens[0]}` is not a valid collection rate.") from None
        return Extra(score=self.validate_score(value))

    def validate_score(self, score: int) -> int:
        if not 0 <= score <= self.limit:
            raise MalformedSubmission(f"{self.label} collection rate must be between 0 - {self.limit}.")
        return score

    def format_extra(self, submission: Submission) -> Optional[str]:
        if submission.score is None:
            return None
        if self.percent:
            return f"{submission.score}%"
        return f"{submission.score}/{self.limit}"


class OpaqueRules(GameRules):
    """Games without a known metric: an optional leading number, then free text."""

    def parse_extra(self, tokens: List[str]) -> Extra:
        if not tokens:
            return Extra()
        number = None
        if tokens[0].isdecimal():
            number = int(tokens[0])
            if number > MAX_STORED_INT:
                raise MalformedSubmission(f"`{tokens[0]}` is too large.")
            tokens = tokens[1:]
        text = " ".join(tokens) or None
        if text is not None and len(text) > MAX_OPTION_TEXT_LEN:
            raise MalformedSubmission(f"Submission notes must be at most {MAX_OPTION_TEXT_LEN} characters.")
        return Extra(option_number=number, option_text=text)

    def validate_score(self, score: int) -> int:
        if score < 0:
            raise MalformedSubmission("Score cannot be negative.")
        if score > MAX_STORED_INT:
            raise MalformedSubmission("Score is too large.")
        return score

    def format_extra(self, submission: Submission) -> Optional[str]:
        parts = [str(value) for value in (submission.score, submission.option_number, submission.option_text) if value is not None]
        return " ".join(parts) or None


RULES: Dict[GameTag, GameRules] = {
    GameTag.ALTTPR: CollectionRules("ALTTPR", 216),
    GameTag.SMZ3: CollectionRules("SMZ3", 316),
    GameTag.SMTOTAL: CollectionRules("SM Total", 100, percent=True),
    GameTag.SMVARIA: CollectionRules("SM VARIA", 100, percent=True),
    GameTag.FF4FE: OpaqueRules(),
    GameTag.OTHER: OpaqueRules(),
}


def rules_for(game: GameTag) -> GameRules:
    return RULES.get(game, RULES[GameTag.OTHER])
