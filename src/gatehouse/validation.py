"""Input validation for JSON and form request bodies.

Validators raise ``ValidationError`` (422) on the first failing field,
with messages that name the field::

    email = required_string(inputs, "email", max_length=190)
"""

from collections.abc import Mapping
from typing import Any

from gatehouse.errors import ValidationError


def first_present(data: Mapping[str, Any], *names: str) -> Any:
    """The value under the first of *names* that is present and not ``None``."""
    for name in names:
        value = data.get(name)
        if value is not None:
            return value
    return None


def required_string(
    data: Mapping[str, Any],
    field: str,
    *,
    max_length: int | None = None,
    aliases: tuple[str, ...] = (),
    strip: bool = True,
) -> str:
    """A non-blank string under *field* (or one of its *aliases*).

    Numbers are accepted and converted; other types count as missing.
    """
    value = first_present(data, field, *aliases)
    if isinstance(value, bool) or not isinstance(value, str | int | float):
        raise ValidationError(f"{field} is required.")
    text = str(value)
    if strip:
        text = text.strip()
    if not text.strip():
        raise ValidationError(f"{field} is required.")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length.")
    return text
