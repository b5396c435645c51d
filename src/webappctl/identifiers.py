"""Sortable, time-ordered identifiers for sites and profiles.

An identifier is a 128-bit value: the high 48 bits hold milliseconds since
the Unix epoch and the low 80 bits are random. The text form is 26
characters of Crockford base32, most significant digit first, so sorting
the text sorts by creation time.

Generation is an explicit service (:class:`IdentifierGenerator`) with an
injectable clock and entropy source; parsing and formatting are pure.
"""
from __future__ import annotations

import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ENCODED_LENGTH = 26
TIMESTAMP_BITS = 48
RANDOM_BITS = 80
MAX_VALUE = (1 << 128) - 1
MAX_TIMESTAMP = (1 << TIMESTAMP_BITS) - 1
MAX_RANDOM = (1 << RANDOM_BITS) - 1

# Timestamps outside this window are suspicious but still structurally valid.
EARLIEST_SANE_TIMESTAMP = datetime(2020, 1, 1, tzinfo=UTC)
FUTURE_TOLERANCE = timedelta(days=1)

_DECODE = {char: index for index, char in enumerate(ENCODING)}


class IdentifierError(ValueError):
    """Raised when an identifier cannot be parsed or generated."""


@dataclass(frozen=True, order=True)
class Identifier:
    """A 128-bit sortable identifier."""

    value: int

    def __post_init__(self) -> None:
        """Reject integers outside the 128-bit range."""
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise IdentifierError("Identifier value must be an integer.")
        if self.value < 0 or self.value > MAX_VALUE:
            raise IdentifierError("Identifier value must fit in 128 bits.")

    @classmethod
    def parse(cls, text: str) -> Identifier:
        """Parse the 26 character text form (case-insensitive)."""
        if not isinstance(text, str):
            raise IdentifierError(f"Identifier must be a string, got {type(text).__name__}.")
        candidate = text.strip().upper()
        if len(candidate) != ENCODED_LENGTH:
            raise IdentifierError(
                f"Identifier must be {ENCODED_LENGTH} characters long, got {len(candidate)}."
            )
        value = 0
        for position, char in enumerate(candidate):
            digit = _DECODE.get(char)
            if digit is None:
                raise IdentifierError(
                    f"Identifier contains invalid character {char!r} "
                    f"at position {position}."
                )
            value = (value << 5) | digit
        if value > MAX_VALUE:
            raise IdentifierError("Identifier is out of range (first character must be 0-7).")
        return cls(value)

    @classmethod
    def from_parts(cls, timestamp_ms: int, randomness: int) -> Identifier:
        """Assemble an identifier from its timestamp and random components."""
        if timestamp_ms < 0 or timestamp_ms > MAX_TIMESTAMP:
            raise IdentifierError("Identifier timestamp does not fit in 48 bits.")
        if randomness < 0 or randomness > MAX_RANDOM:
            raise IdentifierError("Identifier randomness does not fit in 80 bits.")
        return cls((timestamp_ms << RANDOM_BITS) | randomness)

    @property
    def timestamp_ms(self) -> int:
        """Milliseconds since the Unix epoch stored in the high bits."""
        return self.value >> RANDOM_BITS

    @property
    def randomness(self) -> int:
        """The 80 random low bits."""
        return self.value & MAX_RANDOM

    @property
    def timestamp(self) -> datetime:
        """Creation time encoded in the identifier."""
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=UTC)

    @property
    def is_nil(self) -> bool:
        """True for the all-zero identifier."""
        return self.value == 0

    def __str__(self) -> str:
        """Return the canonical upper-case text form."""
        value = self.value
        chars = []
        for _ in range(ENCODED_LENGTH):
            chars.append(ENCODING[value & 0x1F])
            value >>= 5
        return "".join(reversed(chars))

    def __repr__(self) -> str:
        """Show the text form for readability in test output."""
        return f"Identifier('{self}')"


NIL_IDENTIFIER = Identifier(0)
DEFAULT_PROFILE_ID = NIL_IDENTIFIER


def parse_identifier(text: str) -> Identifier:
    """Parse *text* into an :class:`Identifier`."""
    return Identifier.parse(text)


def identifier_warnings(
    identifier: Identifier,
    *,
    now: datetime | None = None,
) -> list[str]:
    """Return warnings about a structurally valid but suspicious identifier."""
    if identifier.is_nil:
        return []
    reference = now or datetime.now(UTC)
    created = identifier.timestamp
    warnings: list[str] = []
    if created < EARLIEST_SANE_TIMESTAMP:
        warnings.append(
            f"Identifier {identifier} encodes {created.isoformat()}, "
            "which predates any record this tool could have created."
        )
    elif created > reference + FUTURE_TOLERANCE:
        warnings.append(
            f"Identifier {identifier} encodes {created.isoformat()}, which lies in the future."
        )
    return warnings


def _default_clock() -> datetime:
    return datetime.now(UTC)


@dataclass
class IdentifierGenerator:
    """Produce new identifiers from a wall clock and an entropy source.

    Identifiers generated by the same instance within one millisecond are
    strictly increasing: the random component of the previous identifier is
    incremented instead of drawing fresh entropy.
    """

    clock: Callable[[], datetime] = _default_clock
    entropy: Callable[[int], bytes] = secrets.token_bytes
    _last: Identifier | None = field(default=None, init=False, repr=False)

    def new(self) -> Identifier:
        """Return a fresh identifier."""
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        timestamp_ms = int(now.timestamp() * 1000)
        if timestamp_ms < 0 or timestamp_ms > MAX_TIMESTAMP:
            raise IdentifierError(f"Clock value {now.isoformat()} cannot be encoded.")

        last = self._last
        if last is not None and timestamp_ms <= last.timestamp_ms:
            if last.randomness == MAX_RANDOM:
                raise IdentifierError("Random component overflow within one millisecond.")
            identifier = Identifier.from_parts(last.timestamp_ms, last.randomness + 1)
        else:
            raw = self.entropy(RANDOM_BITS // 8)
            if len(raw) < RANDOM_BITS // 8:
                raise IdentifierError("Entropy source returned too few bytes.")
            randomness = int.from_bytes(raw[: RANDOM_BITS // 8], "big")
            identifier = Identifier.from_parts(timestamp_ms, randomness)

        self._last = identifier
        return identifier


__all__ = [
    "DEFAULT_PROFILE_ID",
    "ENCODED_LENGTH",
    "Identifier",
    "IdentifierError",
    "IdentifierGenerator",
    "NIL_IDENTIFIER",
    "identifier_warnings",
    "parse_identifier",
]
