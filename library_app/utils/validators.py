import re
from typing import Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ISBNValidator:
    """ISBN-10 / ISBN-13 normalization and checksum validation."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return re.sub(r"[^0-9Xx]", "", raw).upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            if not s[:9].isdigit():
                return False
            check = s[-1]
            if check == "X":
                check_val = 10
            elif check.isdigit():
                check_val = int(check)
            else:
                return False
            # Weights 10..1, sum divisible by 11
            total = sum((10 - i) * int(ch) for i, ch in enumerate(s[:9])) + check_val
            return total % 11 == 0
        if len(s) == 13 and s.isdigit():
            total = sum((1 if i % 2 == 0 else 3) * int(ch) for i, ch in enumerate(s[:12]))
            return (10 - total % 10) % 10 == int(s[-1])
        return False


class TextValidator:
    """Basic checks for the free-text catalog fields."""

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        return bool(title and title.strip())

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        # must not be digits only
        if name is None:
            return False
        t = name.strip()
        return bool(t) and not t.isdigit()

    @staticmethod
    def validate_email(email: Optional[str]) -> bool:
        return bool(email and _EMAIL_RE.match(email.strip()))
