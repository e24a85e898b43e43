from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
import traceback
from .logger import logger


class EvalCouncilError(Exception):
    """Base exception for the evaluation council service"""
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)


# ===== Validation (400) =====

class ValidationError(EvalCouncilError):
    """Raised for malformed input; never retried automatically"""
    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code, 400)


class InvalidAmountError(ValidationError):
    def __init__(self, amount):
        super().__init__(f"Amount must be positive, got {amount}", "INVALID_AMOUNT")


class InactiveCodeError(ValidationError):
    def __init__(self, message: str = "This code is no longer active"):
        super().__init__(message, "CODE_INACTIVE")


class ExpiredCodeError(ValidationError):
    def __init__(self, message: str = "This code has expired"):
        super().__init__(message, "CODE_EXPIRED")


class BelowMinimumPurchaseError(ValidationError):
    def __init__(self, minimum: int):
        super().__init__(
            f"Minimum purchase amount of {minimum} required for this code",
            "BELOW_MINIMUM_PURCHASE",
        )


# ===== Forbidden (403) =====

class ForbiddenError(EvalCouncilError):
    def __init__(self, message: str, code: str = "FORBIDDEN"):
        super().__init__(message, code, 403)


class NotEvaluationOwnerError(ForbiddenError):
    def __init__(self, evaluation_id: int):
        super().__init__(f"Evaluation {evaluation_id} belongs to another user", "NOT_EVALUATION_OWNER")


# ===== Not found (404) =====

class NotFoundError(EvalCouncilError):
    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(message, code, 404)


class JobNotFoundError(NotFoundError):
    """Raised when an evaluation job is not found"""
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found", "JOB_NOT_FOUND")


class EvaluationNotFoundError(NotFoundError):
    def __init__(self, evaluation_id: int):
        super().__init__(f"Evaluation {evaluation_id} not found", "EVALUATION_NOT_FOUND")


class ModelNotFoundError(NotFoundError):
    def __init__(self, model_id: str):
        super().__init__(f"Model {model_id} not found or not enabled", "MODEL_NOT_FOUND")


class CodeNotFoundError(NotFoundError):
    def __init__(self, message: str = "Invalid code"):
        super().__init__(message, "CODE_NOT_FOUND")


# ===== Conflict (409) =====

class ConflictError(EvalCouncilError):
    """Raised on state-machine violations"""
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, code, 409)


class InvalidTransitionError(ConflictError):
    """Raised when a job is in a state that does not allow the requested transition"""
    def __init__(self, job_id: str, current_state: str, requested_state: str):
        super().__init__(
            f"Job {job_id} is in state '{current_state}', cannot move to '{requested_state}'",
            "INVALID_TRANSITION",
        )


class AlreadyClaimedError(ConflictError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} is already claimed", "ALREADY_CLAIMED")


class AlreadyInProgressError(ConflictError):
    def __init__(self, evaluation_id: int, model_id: str):
        super().__init__(
            f"Evaluation {evaluation_id} is already in progress for model {model_id}",
            "ALREADY_IN_PROGRESS",
        )


class AlreadyRedeemedError(ConflictError):
    def __init__(self):
        super().__init__("You have already redeemed this voucher", "ALREADY_REDEEMED")


class CodeExhaustedError(ConflictError):
    def __init__(self, message: str = "This code has reached its maximum number of uses"):
        super().__init__(message, "CODE_EXHAUSTED")


class DuplicateCodeError(ConflictError):
    def __init__(self, code: str):
        super().__init__(f"Code {code} already exists", "DUPLICATE_CODE")


class IncompleteError(ConflictError):
    def __init__(self, evaluation_id: int):
        super().__init__(
            f"Cannot run council for evaluation {evaluation_id}: not all models are finished",
            "INCOMPLETE",
        )


class NoQuorumError(ConflictError):
    def __init__(self, evaluation_id: int):
        super().__init__(
            f"No completed model evaluations found for evaluation {evaluation_id}",
            "NO_QUORUM",
        )


# ===== Balance (402) =====

class InsufficientBalanceError(EvalCouncilError):
    def __init__(self, user_id: str, balance: int, requested: int):
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient credits for user {user_id}: balance {balance}, requested {requested}",
            "INSUFFICIENT_BALANCE",
            402,
        )


# ===== Upstream (502) =====

class UpstreamFailure(EvalCouncilError):
    """Raised when a provider or dispatch call fails or times out"""
    def __init__(self, message: str, code: str = "UPSTREAM_FAILURE"):
        super().__init__(message, code, 502)


class DispatchError(UpstreamFailure):
    def __init__(self, job_id: str, reason: str):
        super().__init__(f"Failed to dispatch job {job_id}: {reason}", "DISPATCH_ERROR")


class ProviderError(UpstreamFailure):
    def __init__(self, message: str = "Opinion provider call failed"):
        super().__init__(message, "PROVIDER_ERROR")


class OpinionParseError(ProviderError):
    def __init__(self, message: str = "Failed to parse model response"):
        super().__init__(message)
        self.code = "OPINION_PARSE_ERROR"


# ===== Rate limiting (429) =====

class RateLimitedError(EvalCouncilError):
    def __init__(self, message: str = "Too many attempts. Please wait a minute before trying again."):
        super().__init__(message, "RATE_LIMITED", 429)


async def evalcouncil_exception_handler(request: Request, exc: EvalCouncilError):
    """Handle domain exceptions"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application exception: {exc.code} - {exc.message}",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "request_path": request.url.path,
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "status_code": exc.status_code,
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions"""
    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        extra={
            "http_status_code": exc.status_code,
            "http_detail": exc.detail,
            "request_path": request.url.path,
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": exc.detail,
            "status_code": exc.status_code,
        }
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__} - {str(exc)}",
        extra={
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
            "request_path": request.url.path,
            "exc_traceback": traceback.format_exc(),
        }
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An internal error occurred. Please try again later.",
        }
    )
