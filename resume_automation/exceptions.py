"""
Error taxonomy for the pipeline.

  InputError              malformed or missing requirement / evidence input
  GenerationFailure       the generation capability failed or timed out
  ValidationInconclusive  the validator could not reach a confident verdict
  StoreFailure            the record store call failed

Pure scoring and matching code raises InputError only.  The other three are
recovered at component boundaries into typed results.
"""

from __future__ import annotations

from typing import Optional

from resume_automation.models.enums import ErrorKind


class PipelineError(Exception):
    """Base class for every error the pipeline raises on purpose."""

    kind: ErrorKind = ErrorKind.INPUT

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(PipelineError, ValueError):
    """Malformed input.  Fails fast, no partial result."""

    kind = ErrorKind.INPUT

    def __init__(self, message: str, field: Optional[str] = None):
        if field:
            message = f"{field}: {message}"
        super().__init__(message)
        self.field = field


class GenerationFailure(PipelineError):
    """
    A single generation-capability call failed.

    Attributes:
        status_code: HTTP-style status when the service reported one
        variant: which request failed ("ideal", "personalized", "rewrite", ...)
    """

    kind = ErrorKind.GENERATION

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        variant: str = "",
    ):
        parts = [message]
        if status_code is not None:
            parts.append(f"(status {status_code})")
        super().__init__(" ".join(parts))
        self.status_code = status_code
        self.variant = variant

    @property
    def retryable(self) -> bool:
        # Client errors other than rate limiting will fail the same way again
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class ValidationInconclusive(PipelineError):
    """The validator produced no usable verdict.  Treated as `revise`."""

    kind = ErrorKind.VALIDATION_INCONCLUSIVE


class StoreFailure(PipelineError):
    """A record store call failed."""

    kind = ErrorKind.STORE

    def __init__(self, message: str, table: str = ""):
        super().__init__(f"[{table}] {message}" if table else message)
        self.table = table
