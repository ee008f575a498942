#!/usr/bin/env python3
"""
Скрипт для заполнения справочника способов оплаты.

Существующие способы обновляются по method_code, новые добавляются.
Способы, которых нет в списке, не удаляются (их можно отключить флагом --deactivate).

Использование:
    python seed_payment_methods.py
    python seed_payment_methods.py --deactivate cbe
"""
import asyncio
import argparse
import logging

from sqlalchemy import select

from app.database import AsyncSessionLocal, engine
from app.models.payment import PaymentMethod

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHODS = [
    {"method_code": "cash", "method_name": "Cash", "requires_reference": False, "sort_order": 1},
    {"method_code": "ebirr", "method_name": "E-Birr", "requires_reference": True, "sort_order": 2,
     "description": "Мобильный кошелёк"},
    {"method_code": "cbe", "method_name": "CBE", "requires_reference": True, "sort_order": 3,
     "description": "Commercial Bank of Ethiopia"},
    {"method_code": "bank_transfer", "method_name": "Bank Transfer", "requires_reference": True, "sort_order": 4},
]


async def seed(deactivate: list[str]):
    """Добавить/обновить способы оплаты."""
    async with AsyncSessionLocal() as db:
        for data in DEFAULT_PAYMENT_METHODS:
            stmt = select(PaymentMethod).where(PaymentMethod.method_code == data["method_code"])
            method = (await db.execute(stmt)).scalar_one_or_none()
            if method:
                for key, value in data.items():
                    setattr(method, key, value)
                logger.info(f"Обновлён способ оплаты: {data['method_code']}")
            else:
                db.add(PaymentMethod(is_active=True, **data))
                logger.info(f"Добавлен способ оплаты: {data['method_code']}")

        for code in deactivate:
            stmt = select(PaymentMethod).where(PaymentMethod.method_code == code)
            method = (await db.execute(stmt)).scalar_one_or_none()
            if method:
                method.is_active = False
                logger.info(f"Отключён способ оплаты: {code}")
            else:
                logger.warning(f"Способ оплаты '{code}' не найден")

        await db.commit()
    await engine.dispose()


async def main():
    parser = argparse.ArgumentParser(description='Заполнить справочник способов оплаты')
    parser.add_argument('--deactivate', nargs='*', default=[], help='Коды способов, которые нужно отключить')
    args = parser.parse_args()

    try:
        await seed(args.deactivate)
    except Exception as e:
        logger.error(f"Ошибка при заполнении способов оплаты: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    asyncio.run(main())
