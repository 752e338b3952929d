# cinebot/services/obfuscator.py

"""
Builds the obfuscated query strings expected by the sources provider.

Every logical parameter is encoded with a reversible, type-specific transform
and stored under a random key, next to an expiry field and a random number of
junk fields. The transforms must match the receiving service exactly.
"""

from __future__ import annotations

import base64
import random
import time
from typing import Any, Mapping
from urllib.parse import urlencode

KEY_ALPHABET = "abceghjklmnopqrtuvwxyzABCEGHIJKLMNOPQRTUVWXYZ0123456789"
KEY_LENGTH = 8
EXPIRY_WINDOW_MS = 60_000
JUNK_PREFIXES = ("q", "w", "p", "z", "h", "j")
JUNK_MIN_COUNT = 10
JUNK_EXTRA_MAX = 9
_TYPE_XOR_KEY = ord("k")

_PREFIX_TO_KIND = {
    "c": "id",
    "t": "type",
    "s": "season",
    "e": "episode",
    "x": "exp",
    "d": "default",
}

# Logical parameter name -> encoding kind. Unknown names use their first two
# characters, which always lands on the default transform.
_PARAM_KINDS = {
    "tmdbId": "id",
    "type": "type",
    "season": "season",
    "episode": "episode",
}

_system_random = random.SystemRandom()


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("latin-1")).decode("ascii")


def _unb64(text: str) -> str:
    return base64.b64decode(text.encode("ascii")).decode("latin-1")


def _shift_digits(text: str, offset: int) -> str:
    return "".join(
        str((int(char) + offset) % 10) if char.isdigit() else char for char in text
    )


def generate_random_key(
    length: int = KEY_LENGTH, rng: random.Random | None = None
) -> str:
    """Returns a random token drawn from the 55-character key alphabet."""
    rng = rng or _system_random
    return "".join(rng.choice(KEY_ALPHABET) for _ in range(length))


def encode_value(value: Any, kind: str) -> str:
    """Encodes a single value with the transform registered for ``kind``."""
    value_str = str(value)

    if kind == "id":
        return f"c{_b64(_shift_digits(value_str, 7))}"

    if kind == "type":
        xored = "".join(chr(ord(char) ^ _TYPE_XOR_KEY) for char in value_str)
        return f"t{_b64(xored)}"

    if kind == "season":
        return f"s{_shift_digits(str(int(value_str) + 5), 3)}"

    if kind == "episode":
        return f"e{_shift_digits(str(int(value_str) + 9), 4)}"

    if kind == "exp":
        hex_string = "".join(format(ord(char), "x") for char in value_str)
        return f"x{_b64(hex_string)}"

    return f"d{_b64(value_str)}"


def decode_value(encoded: str) -> tuple[str, str] | None:
    """
    Reverses :func:`encode_value`.

    Returns ``(kind, value)`` for a real field, or ``None`` when the prefix
    marks a junk field.
    """
    if not encoded:
        return None
    kind = _PREFIX_TO_KIND.get(encoded[0])
    if kind is None:
        return None
    payload = encoded[1:]

    if kind == "id":
        return kind, _shift_digits(_unb64(payload), 3)
    if kind == "type":
        return kind, "".join(chr(ord(char) ^ _TYPE_XOR_KEY) for char in _unb64(payload))
    if kind == "season":
        return kind, str(int(_shift_digits(payload, 7)) - 5)
    if kind == "episode":
        return kind, str(int(_shift_digits(payload, 6)) - 9)
    if kind == "exp":
        hex_string = _unb64(payload)
        return kind, "".join(
            chr(int(hex_string[i : i + 2], 16)) for i in range(0, len(hex_string), 2)
        )
    return kind, _unb64(payload)


def decode_params(fields: Mapping[str, str]) -> dict[str, str]:
    """Decodes every real field of an obfuscated request, keyed by kind."""
    decoded: dict[str, str] = {}
    for encoded in fields.values():
        result = decode_value(encoded)
        if result:
            kind, value = result
            decoded[kind] = value
    return decoded


def _unique_key(existing: Mapping[str, str], rng: random.Random) -> str:
    key = generate_random_key(rng=rng)
    while key in existing:
        key = generate_random_key(rng=rng)
    return key


def obfuscate_params(
    params: Mapping[str, Any],
    *,
    now_ms: int | None = None,
    rng: random.Random | None = None,
) -> dict[str, str]:
    """
    Turns logical parameters into a randomly keyed, junk-padded field mapping.

    ``params`` uses the logical names ``tmdbId``, ``type``, ``season`` and
    ``episode``; ``None`` values are skipped. An expiry field set 60 seconds
    after ``now_ms`` is always added.
    """
    rng = rng or _system_random
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    # 1. Expiry field first, so it is always present
    result: dict[str, str] = {}
    result[_unique_key(result, rng)] = encode_value(now_ms + EXPIRY_WINDOW_MS, "exp")

    # 2. Real fields, each under a fresh random key
    for name, value in params.items():
        if value is None:
            continue
        kind = _PARAM_KINDS.get(name, name[:2])
        result[_unique_key(result, rng)] = encode_value(value, kind)

    # 3. Junk fields; their prefixes never decode to a real kind
    junk_count = JUNK_MIN_COUNT + rng.randint(0, JUNK_EXTRA_MAX)
    for _ in range(junk_count):
        prefix = rng.choice(JUNK_PREFIXES)
        junk = _b64(generate_random_key(8 + rng.randint(0, 7), rng=rng))
        result[_unique_key(result, rng)] = f"{prefix}{junk}"

    return result


def build_watch_sources_url(
    base_url: str,
    tmdb_id: int | str,
    media_type: str,
    season: int = -1,
    episode: int = -1,
    *,
    rng: random.Random | None = None,
) -> str:
    """Returns the full ``/watch/sources`` URL for a movie or an episode."""
    params: dict[str, Any] = {"tmdbId": str(tmdb_id), "type": media_type}
    if season != -1:
        params["season"] = season
    if episode != -1:
        params["episode"] = episode

    query_string = urlencode(obfuscate_params(params, rng=rng))
    return f"{base_url.rstrip('/')}/watch/sources?{query_string}"
