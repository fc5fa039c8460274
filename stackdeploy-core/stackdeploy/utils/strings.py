import hashlib
import uuid
from typing import Union

from stackdeploy.constants import DEFAULT_ENCODING


def to_bytes(obj: Union[str, bytes], encoding: str = DEFAULT_ENCODING, errors="strict") -> bytes:
    """If ``obj`` is an instance of ``text_type``, return
    ``obj.encode(encoding, errors)``, otherwise return ``obj``"""
    return obj.encode(encoding, errors) if isinstance(obj, str) else obj


def short_uid() -> str:
    return str(uuid.uuid4())[0:8]


def long_uid() -> str:
    return str(uuid.uuid4())


def sha256_hex(string: Union[str, bytes]) -> str:
    return hashlib.sha256(to_bytes(string)).hexdigest()


def parse_key_value_pairs(pairs, separator: str = "=") -> dict[str, str]:
    """
    Parses a list of ``KEY=VALUE`` strings into a dict, preserving the order of the keys. Only the first separator
    splits a pair, so values may contain the separator themselves.

    :raises ValueError: if a pair does not contain the separator or has an empty key
    """
    result = {}
    for pair in pairs or []:
        key, sep, value = pair.partition(separator)
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Invalid key/value pair '{pair}', expected format KEY{separator}VALUE")
        result[key] = value
    return result
