"""Application errors rendered as ``{"error": {"message", "type"}}`` responses."""

from dataclasses import dataclass


@dataclass
class AppError(Exception):
    status_code: int
    message: str
    error_type: str = "internal_error"

    def __str__(self) -> str:
        return self.message

    def to_response(self) -> dict:
        return {"error": {"message": self.message, "type": self.error_type}}


class InvalidInputError(AppError):
    def __init__(self, message: str = "Invalid request"):
        super().__init__(400, message, "invalid_input")


class UnauthenticatedError(AppError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(401, message, "unauthenticated")


class InvalidAPIKeyError(AppError):
    def __init__(self, message: str = "Invalid or inactive API key"):
        super().__init__(401, message, "invalid_key")


class QuotaExceededError(AppError):
    def __init__(self, message: str = "API key usage limit reached"):
        super().__init__(403, message, "quota_exceeded")


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(404, message, "not_found")


class RepositoryNotFoundError(NotFoundError):
    def __init__(
        self, message: str = "Repository not found or inaccessible"
    ):
        super().__init__(message)


class GitHubUpstreamError(AppError):
    def __init__(self, message: str = "GitHub request failed"):
        super().__init__(502, message, "internal_error")


class RateLimitedError(AppError):
    def __init__(self, message: str = "GitHub rate limit exceeded, try again later"):
        super().__init__(503, message, "internal_error")


class SummarizationTimeoutError(AppError):
    def __init__(self, message: str = "Repository summarization timed out"):
        super().__init__(504, message, "internal_error")


class PersistenceError(AppError):
    def __init__(self, message: str = "Failed to store analysis"):
        super().__init__(500, message, "internal_error")
