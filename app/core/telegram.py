"""Утилиты для работы с Telegram."""
import hashlib
import hmac
import json
import logging
import time
from typing import Any
from urllib.parse import parse_qsl

logger = logging.getLogger(__name__)


def validate_telegram_init_data(
    init_data: str,
    bot_token: str,
    max_age_seconds: int | None = 86400,
) -> dict[str, Any] | None:
    """
    Валидация init_data от Telegram WebApp.

    Args:
        init_data: Строка init_data от Telegram
        bot_token: Токен бота от BotFather
        max_age_seconds: Максимальный возраст auth_date, None: не проверять

    Returns:
        Словарь с данными пользователя или None если валидация не прошла
    """
    try:
        parsed = dict(parse_qsl(init_data, keep_blank_values=True))
    except ValueError:
        return None

    received_hash = parsed.pop("hash", None)
    if not received_hash:
        return None

    data_check_string = "\n".join(f"{key}={value}" for key, value in sorted(parsed.items()))

    secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    calculated_hash = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()

    if not hmac.compare_digest(calculated_hash, received_hash):
        return None

    if max_age_seconds is not None:
        try:
            auth_date = int(parsed.get("auth_date", "0"))
        except ValueError:
            return None
        if time.time() - auth_date > max_age_seconds:
            logger.info("Telegram init_data устарел")
            return None

    try:
        return json.loads(parsed["user"]) if "user" in parsed else {}
    except json.JSONDecodeError:
        return None
