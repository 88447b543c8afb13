"""Exceptions raised by the cognition core."""


class CognitionError(Exception):
    """Base class for cognition core errors."""


class InvalidMemoryError(CognitionError, ValueError):
    """A memory record is malformed (e.g. it has no content)."""


class RuleEvaluationError(CognitionError):
    """A behavior rule condition could not be evaluated against a context."""

    def __init__(self, rule_id: str, cause: Exception):
        super().__init__(f"Rule {rule_id} evaluation failed: {cause}")
        self.rule_id = rule_id
        self.cause = cause
