"""
Validation result models.

Issues carry a severity: errors block the operation, warnings are
logged and let it proceed.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """A single validation issue."""

    field: str
    issue_type: str  # "missing", "invalid_value", "not_allowed", "duplicate", ...
    message: str
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation pipeline.

    Stage 1 (schema): type and account-slot rules, no storage needed.
    Stage 2 (semantic): rules that need the referenced accounts.
    """

    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid and not self.has_errors

    @property
    def has_errors(self) -> bool:
        return any(i.severity == "error" for i in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "error")

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "warning"]
