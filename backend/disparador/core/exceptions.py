# disparador/core/exceptions.py

from fastapi import status

class AppError(Exception):
    """Erro de regra de negócio com mensagem exibida ao usuário."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND

class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN

class PlanLimitError(AppError):
    pass

class DailyLimitError(PlanLimitError):
    pass

class WhatsAppNotReadyError(AppError):
    pass

class ExternalServiceError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY

class DuplicateRecordError(ValueError):
    """Violação de índice único no Mongo (corrida entre checagem e insert)."""
