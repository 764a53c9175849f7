"""Service-level errors. Routers let these propagate; main.py maps them to responses."""

from fastapi import status


class ServiceError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientStockError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__("Insufficient stock")
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InternalError(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
