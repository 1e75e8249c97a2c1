"""Tests for webhook signature verification."""

import hmac
import statistics
import time
from unittest.mock import patch

import pytest

from taskmaster_sync.webhooks.signature import (
    HmacSignatureValidator,
    TokenSignatureValidator,
    sign,
    validate,
)

SECRET = "It's a Secret to Everybody"
PAYLOAD = b"Hello, World!"


def test_sign_matches_known_vector():
    """Known-answer vector from GitHub's webhook documentation."""
    assert sign(PAYLOAD, SECRET) == (
        "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"
    )


def test_valid_signature_accepted():
    assert validate(PAYLOAD, sign(PAYLOAD, SECRET), SECRET) is True


def test_single_byte_payload_mutation_rejected():
    signature = sign(PAYLOAD, SECRET)
    mutated = bytearray(PAYLOAD)
    mutated[0] ^= 0x01
    assert validate(bytes(mutated), signature, SECRET) is False


def test_single_hex_digit_mutation_rejected():
    signature = sign(PAYLOAD, SECRET)
    last = signature[-1]
    mutated = signature[:-1] + ("0" if last != "0" else "1")
    assert validate(PAYLOAD, mutated, SECRET) is False


def test_wrong_secret_rejected():
    assert validate(PAYLOAD, sign(PAYLOAD, "other"), SECRET) is False


@pytest.mark.parametrize(
    "signature",
    [
        None,
        "",
        "sha256=",
        "sha1=0a4d55a8d778e5022fab701977c5d840bbc486d0",
        "757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17",
        "sha256=ünïcödé",
        12345,
    ],
)
def test_malformed_signatures_rejected(signature):
    assert validate(PAYLOAD, signature, SECRET) is False


@pytest.mark.parametrize("secret", [None, ""])
def test_missing_secret_rejected(secret):
    assert validate(PAYLOAD, sign(PAYLOAD, "anything"), secret) is False


def test_comparison_is_constant_time():
    signature = sign(PAYLOAD, SECRET)
    with patch("taskmaster_sync.webhooks.signature.hmac.compare_digest", wraps=hmac.compare_digest) as compare:
        assert validate(PAYLOAD, signature, SECRET) is True

    compare.assert_called_once()
    computed, received = compare.call_args.args
    assert isinstance(computed, bytes)
    assert isinstance(received, bytes)


def _flip_hex_digit(signature, index):
    digits = list(signature)
    digits[index] = "0" if digits[index] != "0" else "1"
    return "".join(digits)


def _batch_seconds(signature, calls=200):
    start = time.perf_counter()
    for _ in range(calls):
        validate(PAYLOAD, signature, SECRET)
    return time.perf_counter() - start


def test_rejection_time_independent_of_mismatch_position():
    signature = sign(PAYLOAD, SECRET)
    first_digit = _flip_hex_digit(signature, len("sha256="))
    last_digit = _flip_hex_digit(signature, len(signature) - 1)
    assert validate(PAYLOAD, first_digit, SECRET) is False
    assert validate(PAYLOAD, last_digit, SECRET) is False

    early, late = [], []
    for _ in range(101):
        # Interleaved so drift in machine load hits both samples alike.
        early.append(_batch_seconds(first_digit))
        late.append(_batch_seconds(last_digit))

    ratio = statistics.median(early) / statistics.median(late)
    assert 0.67 < ratio < 1.5


def test_wrong_prefix_skips_comparison():
    with patch("taskmaster_sync.webhooks.signature.hmac.compare_digest") as compare:
        assert validate(PAYLOAD, "sha1=abcdef", SECRET) is False

    compare.assert_not_called()


def test_custom_prefix():
    validator = HmacSignatureValidator(prefix="v1=")
    assert validator.validate(PAYLOAD, sign(PAYLOAD, SECRET, prefix="v1="), SECRET) is True
    assert validator.validate(PAYLOAD, sign(PAYLOAD, SECRET), SECRET) is False


class TestTokenSignatureValidator:
    """GitLab-style shared token verification."""

    def test_matching_token_accepted(self):
        assert TokenSignatureValidator().validate(PAYLOAD, SECRET, SECRET) is True

    def test_different_token_rejected(self):
        assert TokenSignatureValidator().validate(PAYLOAD, SECRET + "x", SECRET) is False

    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token_rejected(self, token):
        assert TokenSignatureValidator().validate(PAYLOAD, token, SECRET) is False

    def test_missing_secret_rejected(self):
        assert TokenSignatureValidator().validate(PAYLOAD, "", "") is False
        assert TokenSignatureValidator().validate(PAYLOAD, "token", None) is False
