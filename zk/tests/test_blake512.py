from __future__ import annotations

import pytest

from zk.blake512 import DIGEST_SIZE, blake512

# BLAKE-512 reference vectors (SHA-3 submission / sphlib)
VECTORS = [
    (
        b"",
        "a8cfbbd73726062df0c6864dda65defe58ef0cc52a5625090fa17601e1eecd1b"
        "628e94f396ae402a00acc9eab77b4d4c2e852aaaa25a636d80af3fc7913ef5b8",
    ),
    (
        b"\x00",
        "97961587f6d970faba6d2478045de6d1fabd09b61ae50932054d52bc29d31be4"
        "ff9102b9f69e2bbdb83be13d4b9c06091e5fa0b48bd081b634058be0ec49beb3",
    ),
    (
        b"The quick brown fox jumps over the lazy dog",
        "1f7e26f63b6ad25a0896fd978fd050a1766391d2fd0471a77afb975e5034b7ad"
        "2d9ccf8dfb47abbbe656e1b82fbc634ba42ce186e8dc5e1ce09a885d41f43451",
    ),
    (
        b"\x00" * 144,
        "313717d608e9cf758dcb1eb0f0c3cf9fc150b2d500fb33f51c52afc99d358a2f"
        "1374b8a38bba7974e7f6ef79cab16f22ce1e649d6e01ad9589c213045d545dde",
    ),
]


@pytest.mark.parametrize("data,expected", VECTORS)
def test_reference_vectors(data: bytes, expected: str) -> None:
    assert blake512(data).hex() == expected


@pytest.mark.parametrize("n", [111, 112, 127, 128, 239, 256])
def test_padding_boundaries(n: int) -> None:
    # lengths around the one-block/two-block padding split
    digest = blake512(b"\xab" * n)
    assert len(digest) == DIGEST_SIZE
    assert digest != blake512(b"\xab" * (n + 1))


def test_accepts_bytearray_and_memoryview() -> None:
    raw = b"ledger"
    assert blake512(bytearray(raw)) == blake512(memoryview(raw)) == blake512(raw)
