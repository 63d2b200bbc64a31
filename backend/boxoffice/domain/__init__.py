from boxoffice.domain.results import ErrorCategory, ErrorCode, Failure, Result, Success

__all__ = ["ErrorCategory", "ErrorCode", "Failure", "Result", "Success"]
