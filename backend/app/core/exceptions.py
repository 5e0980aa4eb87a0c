from fastapi import HTTPException, status


class InvalidChatRequestException(HTTPException):
    def __init__(self, detail: str = "Missing or invalid message field"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


class CityNotFoundException(HTTPException):
    def __init__(self, detail: str = "unknown_city"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )


class RateLimitExceededException(HTTPException):
    def __init__(self, retry_after: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Too many requests",
                "message": "Rate limit exceeded. Please try again later.",
                "retryAfter": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )


class EmbeddingError(Exception):
    """The embedding service failed or returned an unusable vector."""


class DocumentStoreError(Exception):
    """The vector store query failed."""


class GenerationError(Exception):
    """The LLM streaming call failed."""


class RecorderError(Exception):
    """A conversation/message/ticket write failed."""
