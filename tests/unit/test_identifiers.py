"""Unit tests for db_session_handler.identifiers."""
from __future__ import annotations

import re

import pytest

from db_session_handler.errors import ConfigurationError
from db_session_handler.identifiers import (
    MIN_SESSION_ID_LENGTH,
    SessionIdGenerator,
    generate_session_id,
)

_ALPHABET = re.compile(r"^[0-9A-Za-z_-]+$")


@pytest.fixture()
def generator() -> SessionIdGenerator:
    return SessionIdGenerator()


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestSessionIdGeneratorConstruction:
    def test_default_min_length(self, generator: SessionIdGenerator) -> None:
        assert generator.min_length == MIN_SESSION_ID_LENGTH == 256

    def test_min_length_below_floor_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            SessionIdGenerator(min_length=128)

    def test_unavailable_random_source_rejected(self) -> None:
        def no_entropy(n: int) -> bytes:
            raise NotImplementedError("no urandom")

        with pytest.raises(ConfigurationError, match="random source"):
            SessionIdGenerator(random_bytes=no_entropy)

    def test_short_random_source_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            SessionIdGenerator(random_bytes=lambda n: b"x")

    def test_configuration_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            SessionIdGenerator(min_length=0)


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_exact_length(self, generator: SessionIdGenerator) -> None:
        assert len(generator.generate(256)) == 256

    @pytest.mark.parametrize("length", [256, 257, 300, 512, 1000])
    def test_exact_length_for_various_targets(
        self, generator: SessionIdGenerator, length: int
    ) -> None:
        assert len(generator.generate(length)) == length

    def test_cookie_safe_alphabet(self, generator: SessionIdGenerator) -> None:
        assert _ALPHABET.match(generator.generate(256))

    def test_length_below_floor_rejected(self, generator: SessionIdGenerator) -> None:
        with pytest.raises(ConfigurationError):
            generator.generate(255)

    def test_ten_thousand_ids_are_unique(self, generator: SessionIdGenerator) -> None:
        ids = [generator.generate(256) for _ in range(10_000)]
        assert len(set(ids)) == 10_000
        assert all(len(sid) == 256 for sid in ids)

    def test_tail_comes_from_random_source(self) -> None:
        calls: list[int] = []

        def counting_source(n: int) -> bytes:
            calls.append(n)
            return b"\x00" * n

        gen = SessionIdGenerator(random_bytes=counting_source)
        sid = gen.generate(256)
        assert sid.endswith("A" * 200)
        # One probe at construction, one draw per identifier.
        assert len(calls) == 2
        assert calls[1] * 4 >= (256 - 20) * 3

    def test_repr(self, generator: SessionIdGenerator) -> None:
        assert "256" in repr(generator)


class TestGenerateSessionId:
    def test_default_length(self) -> None:
        assert len(generate_session_id()) == 256

    def test_custom_length(self) -> None:
        assert len(generate_session_id(400)) == 400

    def test_too_short(self) -> None:
        with pytest.raises(ConfigurationError):
            generate_session_id(64)
