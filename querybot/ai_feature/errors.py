from typing import List, Optional


class BotError(Exception):
    """Base class for failures the orchestrator turns into outcomes."""


class ParseFailure(BotError):
    """Provider text did not have the expected structured shape."""


class ValidationFailure(BotError):
    def __init__(self, errors: List[str], sql: Optional[str] = None):
        self.errors = errors
        self.sql = sql
        super().__init__("Generated SQL failed validation: " + ", ".join(errors))


class ExecutionFailure(BotError):
    def __init__(self, cause: str, sql: Optional[str] = None):
        self.cause = cause
        self.sql = sql
        super().__init__(f"Failed to execute query: {cause}")
