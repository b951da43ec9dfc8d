"""Исключения сервисного слоя."""


class ServiceError(Exception):
    """Базовая ошибка сервисов. Преобразуется в JSON-ответ обработчиком в main.py."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
    default_message = "Внутренняя ошибка сервера"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(ServiceError):
    """Сущность не найдена или не принадлежит пользователю."""

    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Ресурс не найден"


class BadRequestError(ServiceError):
    """Некорректный запрос: нет обязательного поля, пустая корзина, неверный статус."""

    status_code = 400
    error_code = "BAD_REQUEST"
    default_message = "Некорректный запрос"


class GatewayError(ServiceError):
    """Ошибка платежного шлюза (сеть, HTTP, таймаут)."""

    status_code = 502
    error_code = "GATEWAY_ERROR"
    default_message = "Не удалось провести оплату, попробуйте еще раз"

    def __init__(self, message: str | None = None, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class GatewayAuthError(GatewayError):
    """Шлюз отклонил учетные данные магазина (HTTP 401)."""

    error_code = "GATEWAY_AUTH_ERROR"
    default_message = "Платежный сервис временно недоступен"


class DuplicateTransactionIdError(GatewayError):
    """clientTransactionId уже использован: нужно перегенерировать транзакцию."""

    status_code = 409
    error_code = "DUPLICATE_TRANSACTION_ID"
    default_message = "Транзакция с таким clientTransactionId уже существует"
