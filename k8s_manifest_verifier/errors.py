
from typing import Optional

STAGE_FETCH = "fetch"
STAGE_MATCH = "match"
STAGE_SIGNATURE = "verify signature"


class VerificationError(Exception):
    """Infrastructure failure of a verification call.

    A resource that simply does not match its manifest is not an error; this
    is raised only when a stage could not produce an answer at all. ``stage``
    names the orchestrator stage that failed and prefixes ``str()``.
    """

    def __init__(self, message: str, stage: str = ""):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage:
            return f"{self.stage}: {self.message}"
        return self.message


class ManifestNotFoundError(VerificationError):
    """No manifest for this resource in the signed artifact."""


class FetchError(VerificationError):
    """The signed artifact itself could not be retrieved."""


class ParseError(VerificationError):
    def __init__(self, message: str, stage: str = "", tree: str = ""):
        super().__init__(message, stage)
        self.tree = tree


class DryRunError(VerificationError):
    """The cluster rejected or failed a dry-run request."""


class SignatureError(VerificationError):
    """Signature material is missing or malformed (not merely invalid)."""


def wrap_error(exc: Exception, stage: str, context: str) -> VerificationError:
    """Return ``exc`` re-labelled with ``stage``, keeping its class when known."""
    message = f"{context}: {exc}"
    if isinstance(exc, ParseError):
        return ParseError(f"{context}: {exc.message}", stage=stage, tree=exc.tree)
    if isinstance(exc, VerificationError):
        return type(exc)(f"{context}: {exc.message}", stage=stage)
    return VerificationError(message, stage=stage)


def stage_of(exc: BaseException) -> Optional[str]:
    return getattr(exc, "stage", None) or None
