"""CPF (Brazilian individual taxpayer id) helpers."""

import re

CPF_LENGTH = 11

_NON_DIGITS = re.compile(r"\D")
_REPEATED = re.compile(r"^(\d)\1+$")


def strip_tax_id(value: str | None) -> str:
    """Drop punctuation/whitespace, keeping only digits."""

    return _NON_DIGITS.sub("", value or "")


def _check_digit(digits: str) -> int:
    # mod-11 with weights counting down to 2; remainders 10 and 11 become 0.
    weight = len(digits) + 1
    total = sum(int(d) * (weight - i) for i, d in enumerate(digits))
    remainder = (total * 10) % 11
    return 0 if remainder == 10 else remainder


def validate_cpf(value: str | None) -> bool:
    """Return True when `value` is a CPF with valid check digits."""

    cpf = strip_tax_id(value)
    if len(cpf) != CPF_LENGTH or _REPEATED.match(cpf):
        return False
    if _check_digit(cpf[:9]) != int(cpf[9]):
        return False
    return _check_digit(cpf[:10]) == int(cpf[10])


def format_cpf(value: str | None) -> str:
    """Render as `000.000.000-00`; other lengths are returned stripped."""

    cpf = strip_tax_id(value)
    if len(cpf) != CPF_LENGTH:
        return cpf
    return f"{cpf[:3]}.{cpf[3:6]}.{cpf[6:9]}-{cpf[9:]}"
