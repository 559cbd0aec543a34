"""
Keyword encoding shared by the native bindings.

Enums are passed through the public API as lowercase, hyphenated keywords;
underscores are accepted in place of hyphens. Each backend declares its own
tables and builds encoders / decoders with the helpers below.
"""

from __future__ import annotations

from typing import Iterable, Mapping


def normalize(key: str) -> str:
    return str(key).lower().replace("_", "-")


def enc_keyword(table: Mapping[str, int], key: str, name: str = "keyword") -> int:
    """
    Encode `key` through `table`.

    Raises
    ------
    ValueError
        If the key is not in the table. The message names the table and
        lists the accepted keys.
    """
    k = normalize(key)
    try:
        return table[k]
    except KeyError:
        raise ValueError(
            f"Unknown {name} {key!r}. Expected one of {sorted(table)}"
        ) from None


def mask(table: Mapping[str, int], flags: Iterable[str], name: str = "flag") -> int:
    """OR together the encoded values of several flag keywords."""
    res = 0
    for f in flags:
        res |= enc_keyword(table, f, name)
    return res


def decoder(table: Mapping[str, int], name: str):
    reverse: dict[int, str] = {}
    for k, v in table.items():
        reverse.setdefault(v, k)

    def dec(value: int) -> str:
        try:
            return reverse[int(value)]
        except KeyError:
            raise ValueError(f"Unknown {name} value {value}") from None

    dec.__name__ = f"dec_{name.replace(' ', '_')}"
    return dec


