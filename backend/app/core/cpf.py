"""CPF (Cadastro de Pessoas Físicas) validation and formatting."""
import re
from typing import Optional

CPF_LENGTH = 11


def clean_cpf(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def _check_digit(digits: str) -> int:
    # weights run from len+1 down to 2
    total = sum(int(d) * w for d, w in zip(digits, range(len(digits) + 1, 1, -1)))
    remainder = (total * 10) % 11
    return 0 if remainder == 10 else remainder


def is_valid_cpf(value: Optional[str]) -> bool:
    """Length, repeated-digit and both mod-11 check digits."""
    cpf = clean_cpf(value)
    if len(cpf) != CPF_LENGTH or cpf == cpf[0] * CPF_LENGTH:
        return False
    if _check_digit(cpf[:9]) != int(cpf[9]):
        return False
    return _check_digit(cpf[:10]) == int(cpf[10])


def format_cpf(value: str) -> str:
    cpf = clean_cpf(value)
    if len(cpf) != CPF_LENGTH:
        return value
    return f"{cpf[:3]}.{cpf[3:6]}.{cpf[6:9]}-{cpf[9:]}"


def mask_cpf(value: str) -> str:
    cpf = clean_cpf(value)
    if len(cpf) != CPF_LENGTH:
        return "***"
    return f"{cpf[:3]}.***.***-{cpf[9:]}"
