"""Error taxonomy for line-id tagging.

None of these are fatal to an editing session. The generator and the sync
driver build them as records and log them; only ``MultipleTagsError`` is
raised to a caller, and only when strict tag checking is switched on.
"""

from typing import Optional


class TaggingError(Exception):
    pass


class ParseUnavailable(TaggingError):
    """The parser failed or produced no tree; tagging yields no edits."""

    def __init__(self, file_name: str, reason: str = ""):
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"{file_name}: {reason}" if reason else file_name)


class GenerationExhausted(TaggingError):
    """Every random draw collided with an id already in use."""

    def __init__(self, file_name: Optional[str], line: int, text: str, attempts: int):
        self.file_name = file_name
        self.line = line
        self.text = text
        self.attempts = attempts
        super().__init__(
            f"Failed to generate unique ID after {attempts} attempts "
            f"for {file_name}:{line}: {text}"
        )


class StaleResult(TaggingError):
    def __init__(self, file_name: str, line: int, expected: str, actual: Optional[str]):
        self.file_name = file_name
        self.line = line
        self.expected = expected
        self.actual = actual
        super().__init__(f"{file_name}:{line} changed since it was parsed")


class AnchorMissing(TaggingError):
    pass


class MultipleTagsError(TaggingError, ValueError):
    def __init__(self, line: str, identifiers):
        self.line = line
        self.identifiers = list(identifiers)
        super().__init__(
            "More than one id tag on one line: " + ", ".join(self.identifiers)
        )
