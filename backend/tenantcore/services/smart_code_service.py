# Overview: Service-layer validation for smart codes; pure functions, no database work.

"""
Smart Code Validator

Every entity, dynamic field, relationship, transaction and transaction line
carries a smart code: an uppercase dot-delimited classification tag.

FORMAT:
    <NAMESPACE>.<SEGMENT>(.<SEGMENT>){1,7}.V<version>

    - NAMESPACE: 2-15 uppercase letters/digits (e.g. "HERA")
    - 2-8 segments of 1-30 uppercase letters/digits/underscores
    - version: uppercase "V" followed by an integer
    - 4-10 segments in total

    HERA.CRM.CUSTOMER.ENTITY.V1          valid
    HERA.CRM.customer.ENTITY.V1          invalid (lowercase segment)
    HERA.CRM.CUSTOMER.ENTITY.v1          invalid (lowercase version marker)

Invalid codes are rejected, never truncated or corrected.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..errors import ValidationError


SMART_CODE_PATTERN = r"^[A-Z0-9]{2,15}(\.[A-Z0-9_]{1,30}){2,8}\.V[0-9]+$"
SMART_CODE_REGEX = re.compile(SMART_CODE_PATTERN)


@dataclass(frozen=True)
class SmartCode:
    namespace: str
    segments: tuple[str, ...]
    version: int

    def __str__(self) -> str:
        return ".".join((self.namespace, *self.segments, f"V{self.version}"))


def is_valid_smart_code(value) -> bool:
    """True if value is a string matching SMART_CODE_PATTERN exactly."""
    return isinstance(value, str) and SMART_CODE_REGEX.fullmatch(value) is not None


def validate_smart_code(value, field: str = "smart_code") -> str:
    """
    Gate for every write that carries a smart code.

    Returns the value unchanged if valid.

    Raises:
        ValidationError naming the offending field and the expected pattern
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field, expected=SMART_CODE_PATTERN)

    if not is_valid_smart_code(value):
        raise ValidationError(
            f"{field} {value!r} does not match the smart code format",
            field=field,
            expected=SMART_CODE_PATTERN,
        )
    return value


def parse_smart_code(value: str) -> SmartCode:
    """Split a valid smart code into namespace, middle segments and version."""
    validate_smart_code(value)
    parts = value.split(".")
    return SmartCode(
        namespace=parts[0],
        segments=tuple(parts[1:-1]),
        version=int(parts[-1][1:]),
    )


def build_smart_code(namespace: str, *segments: str, version: int = 1) -> str:
    """Assemble and validate a smart code, e.g. build_smart_code("HERA", "CRM", "CUSTOMER")."""
    code = ".".join((namespace, *segments, f"V{version}"))
    return validate_smart_code(code)
