"""
Custom Exceptions for smoldev
=============================

Every error raised by the pipeline derives from SmolDevError so the CLI
can report it with a stable code and structured details.

Usage:
    from smoldev.exceptions import ConfigError, MalformedResponseError

    if not intent.strip():
        raise ConfigError("no prompt specified", field="prompt")

    try:
        payload = find_json_payload(raw)
    except MalformedResponseError as e:
        logger.error(f"Bad response: {e}")
        raise
"""

from typing import Optional, Any, Dict, List


class SmolDevError(Exception):
    """Base exception for all smoldev errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Configuration Errors
# ============================================

class ConfigError(SmolDevError):
    """Missing or invalid intent, path or limit. Raised before any work starts."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="CONFIG_ERROR", details=details)


# ============================================
# External Call Errors
# ============================================

class ExternalCallError(SmolDevError):
    """Transport, auth or rate-limit failure from the generation service"""

    def __init__(self, message: str, operation: Optional[str] = None, cause: Optional[BaseException] = None):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if cause is not None:
            details["cause_type"] = type(cause).__name__
        super().__init__(message, code="EXTERNAL_CALL_FAILED", details=details)
        self.cause = cause


class MalformedResponseError(SmolDevError):
    """The structured payload could not be located or decoded"""

    def __init__(self, message: str, raw_text: str):
        super().__init__(message, code="MALFORMED_RESPONSE")
        self.raw_text = raw_text
        self.details["raw_length"] = len(raw_text)

    def __str__(self) -> str:
        return f"{self.message}\nRaw output: {self.raw_text}"


# ============================================
# File System Errors
# ============================================

class FileWriteError(SmolDevError):
    """Directory or file creation/write failed"""

    def __init__(self, path: str, cause: BaseException):
        super().__init__(
            f"failed to write {path}: {cause}",
            code="FILE_WRITE_FAILED",
            details={"path": path, "cause_type": type(cause).__name__}
        )
        self.path = path
        self.cause = cause


# ============================================
# Pipeline Errors
# ============================================

class StageError(SmolDevError):
    """Planning or dependency extraction failed; nothing downstream can run"""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(
            f"failed to get {stage}: {cause}",
            code="STAGE_FAILED",
            details={"stage": stage, "cause_type": type(cause).__name__}
        )
        self.stage = stage
        self.cause = cause


class TaskError(SmolDevError):
    """Generating a single file failed"""

    def __init__(self, path: str, cause: BaseException):
        super().__init__(
            f"{path}: {cause}",
            code="TASK_FAILED",
            details={"path": path, "cause_type": type(cause).__name__}
        )
        self.path = path
        self.cause = cause


class TaskNotStartedError(SmolDevError):
    """A task was never started because an earlier task already failed"""

    def __init__(self, name: str):
        super().__init__(
            f"{name}: not started after an earlier failure",
            code="TASK_NOT_STARTED",
            details={"task": name}
        )
        self.name = name


class GenerationFailedError(SmolDevError):
    """One or more files could not be generated"""

    def __init__(self, result: Any):
        failures: Dict[str, BaseException] = result.failures
        super().__init__(
            f"{len(failures)} of {len(result.manifest)} files failed to generate",
            code="GENERATION_FAILED",
            details={"failed_paths": list(failures)}
        )
        self.result = result

    @property
    def errors(self) -> List[BaseException]:
        return list(self.result.failures.values())

    def __str__(self) -> str:
        lines = [self.message]
        for path, error in self.result.failures.items():
            cause = getattr(error, "cause", None) or error
            lines.append(f"  {path}: {type(cause).__name__}: {cause}")
        return "\n".join(lines)
