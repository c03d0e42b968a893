"""Session identifier generation.

Identifiers are a short time-derived prefix followed by URL-safe base64 text
drawn from a cryptographically strong random source, truncated to an exact
length.  The prefix only disambiguates; the entropy comes from the random
tail.

Classes
-------
- SessionIdGenerator  — produces fixed-length identifiers

Functions
---------
- generate_session_id — module-level shortcut using a shared generator
"""
from __future__ import annotations

import base64
import math
import secrets
import time
from typing import Callable

from db_session_handler.errors import ConfigurationError

MIN_SESSION_ID_LENGTH: int = 256


def _unique_prefix() -> str:
    """Return the current time in microseconds as lowercase hex."""
    return format(time.time_ns() // 1000, "x")


class SessionIdGenerator:
    """Create unguessable session identifiers of an exact length.

    Parameters
    ----------
    min_length:
        Shortest identifier this generator will produce.  Values below
        256 are rejected.
    random_bytes:
        Source of cryptographically strong random bytes.  Defaults to
        ``secrets.token_bytes``; override only in tests.

    Raises
    ------
    ConfigurationError
        If ``min_length`` is below 256 or the random source is unusable.
    """

    def __init__(
        self,
        min_length: int = MIN_SESSION_ID_LENGTH,
        random_bytes: Callable[[int], bytes] | None = None,
    ) -> None:
        if min_length < MIN_SESSION_ID_LENGTH:
            raise ConfigurationError(
                f"Session ID length cannot be less than {MIN_SESSION_ID_LENGTH}, got {min_length}"
            )
        self._min_length = min_length
        self._random_bytes = random_bytes or secrets.token_bytes
        self._check_random_source()

    @property
    def min_length(self) -> int:
        return self._min_length

    def _check_random_source(self) -> None:
        try:
            probe = self._random_bytes(16)
        except (NotImplementedError, OSError) as exc:
            raise ConfigurationError(
                f"No cryptographically strong random source available: {exc}"
            ) from exc
        if not isinstance(probe, bytes) or len(probe) != 16:
            raise ConfigurationError("Random source returned an unexpected value")

    def generate(self, target_length: int) -> str:
        """Return a new identifier of exactly ``target_length`` characters.

        Parameters
        ----------
        target_length:
            Required identifier length.

        Returns
        -------
        str
            Identifier made of ``[0-9a-zA-Z_-]`` characters.

        Raises
        ------
        ConfigurationError
            If ``target_length`` is below the generator's minimum.
        """
        if target_length < self._min_length:
            raise ConfigurationError(
                f"Session ID length cannot be less than {self._min_length}, got {target_length}"
            )
        prefix = _unique_prefix()
        remaining = target_length - len(prefix)
        # 3 random bytes encode to 4 base64 characters.
        n_bytes = math.ceil(remaining * 3 / 4)
        secret = base64.urlsafe_b64encode(self._random_bytes(n_bytes)).decode("ascii")
        return (prefix + secret.rstrip("="))[:target_length]

    def __repr__(self) -> str:
        return f"SessionIdGenerator(min_length={self._min_length})"


_default_generator: SessionIdGenerator | None = None


def generate_session_id(length: int = MIN_SESSION_ID_LENGTH) -> str:
    """Return a new identifier of ``length`` characters from a shared generator."""
    global _default_generator
    if _default_generator is None:
        _default_generator = SessionIdGenerator()
    return _default_generator.generate(length)
