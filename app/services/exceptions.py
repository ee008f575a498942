"""Доменные исключения платёжного модуля."""


class PaymentServiceError(Exception):
    """Базовое исключение платёжных сервисов."""
    pass


class PaymentValidationError(PaymentServiceError, ValueError):
    """Некорректные входные данные или нарушение лимита суммы."""
    pass


class OrderNotFoundError(PaymentServiceError, LookupError):
    """Заказ не найден или удалён."""
    pass


class PaymentNotFoundError(PaymentServiceError, LookupError):
    """Платёж не найден или удалён."""
    pass


class LedgerIntegrityError(PaymentServiceError):
    """Операция нарушила бы инвариант 0 <= paid_amount <= total_amount."""
    pass
