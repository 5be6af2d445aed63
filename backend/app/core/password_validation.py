"""Password strength and free-text sanitization helpers."""
import re
from typing import List


def validate_password_strength(password: str) -> tuple[bool, List[str]]:
    """
    Validate admin password strength.

    Returns:
        (is_valid, list_of_errors)
    """
    errors = []

    if len(password) < 8:
        errors.append("A senha deve ter pelo menos 8 caracteres")

    if len(password) > 128:
        errors.append("A senha é muito longa (máximo 128 caracteres)")

    if not re.search(r'[a-zà-ÿ]', password):
        errors.append("A senha deve conter pelo menos uma letra minúscula")

    if not re.search(r'[A-ZÀ-Ý]', password):
        errors.append("A senha deve conter pelo menos uma letra maiúscula")

    if not re.search(r'\d', password):
        errors.append("A senha deve conter pelo menos um número")

    return (len(errors) == 0, errors)


def sanitize_user_input(text: str, max_length: int = 10000) -> str:
    """
    Trim user-provided text and strip null bytes and control characters.

    Newlines and tabs are kept so multi-line fields (policy content,
    WhatsApp templates) survive.
    """
    if not text:
        return ""

    text = text.strip()[:max_length]
    text = text.replace('\x00', '')
    return ''.join(char for char in text if ord(char) >= 32 or char in '\n\r\t')
