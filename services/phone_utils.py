# services/phone_utils.py
"""Форматування номерів та визначення оператора, категорії й особливостей."""
import re
from typing import List

OPERATORS = {
    "39": "Kyivstar", "67": "Kyivstar", "68": "Kyivstar", "96": "Kyivstar", "97": "Kyivstar", "98": "Kyivstar",
    "50": "Vodafone", "66": "Vodafone", "95": "Vodafone", "99": "Vodafone",
    "63": "lifecell", "73": "lifecell", "93": "lifecell",
    "91": "Trimob",
    "92": "Peoplenet",
}
UNKNOWN_OPERATOR = "Інший оператор"

_REPEATED = re.compile(r"(\d)\1{3,}")
_SAME_ENDING = re.compile(r"(\d)\1{2}$")


def _digits(number: str) -> str:
    return re.sub(r"\D", "", number)


def format_phone_number(number: str) -> str:
    """'380671234567' або '0671234567' -> '+380 (67) 123-45-67'. Невідомий формат - як є."""
    digits = _digits(number)
    if digits.startswith("380"):
        rest = digits[3:]
    elif digits.startswith("0"):
        rest = digits[1:]
    else:
        return number
    return f"+380 ({rest[0:2]}) {rest[2:5]}-{rest[5:7]}-{rest[7:9]}"


def get_operator(number: str) -> str:
    digits = _digits(number)
    code = digits[3:5] if digits.startswith("380") else digits[1:3]
    return OPERATORS.get(code, UNKNOWN_OPERATOR)


def get_category(price: int) -> str:
    if price >= 15000: return "vip"
    if price >= 8000: return "gold"
    if price >= 3000: return "silver"
    return "bronze"


def has_sequence(digits: str) -> bool:
    """Три цифри поспіль зростають або спадають на 1."""
    for a, b, c in zip(digits, digits[1:], digits[2:]):
        a, b, c = int(a), int(b), int(c)
        if b == a + 1 and c == b + 1: return True
        if b == a - 1 and c == b - 1: return True
    return False


def generate_description(number: str, price: int) -> str:
    last_digits = _digits(number)[-7:]
    if _REPEATED.search(last_digits):
        return "Красивий номер з повторюваними цифрами"
    if has_sequence(last_digits):
        return "Номер з послідовністю цифр"
    if _SAME_ENDING.search(last_digits):
        return "Номер з однаковими останніми цифрами"
    if price >= 15000:
        return "Ексклюзивний VIP номер"
    if price >= 8000:
        return "Преміум номер для бізнесу"
    return "Гарний номер телефону"


def generate_features(number: str, price: int) -> List[str]:
    last_digits = _digits(number)[-7:]
    features = []
    if price >= 15000: features.append("VIP")
    if price >= 8000: features.append("Преміум")
    if _REPEATED.search(last_digits): features.append("Повторювані цифри")
    if has_sequence(last_digits): features.append("Послідовність")
    if _SAME_ENDING.search(last_digits): features.append("Красива кінцівка")
    if price < 3000: features.append("Доступна ціна")
    features.append("Легко запам'ятати")
    return features[:3]  # Максимум 3 особливості
