"""
Stream filter decoding.

Supported filters (full names and inline abbreviations):

    FlateDecode      / Fl    (PNG predictors 10-15, TIFF predictor 2)
    ASCIIHexDecode   / AHx
    ASCII85Decode    / A85
    RunLengthDecode  / RL

Every filter's output is bounded by ``max_output``. Flate output is
produced incrementally so a decompression bomb is stopped as soon as it
crosses the ceiling, not after it has been fully inflated.

Error handling policy:
- Corrupt, truncated or unsupported input raises StreamDecodeError.
- There is no partial result: a stream decodes completely or not at all.
"""

from __future__ import annotations

import base64
import binascii
import re
import zlib
from typing import Any, Dict, List, Optional, Sequence

from erechnung.app.errors import StreamDecodeError


FILTER_ALIASES = {
    "Fl": "FlateDecode",
    "AHx": "ASCIIHexDecode",
    "A85": "ASCII85Decode",
    "RL": "RunLengthDecode",
    "LZW": "LZWDecode",
    "DCT": "DCTDecode",
    "CCF": "CCITTFaxDecode",
}

_CHUNK_SIZE = 64 * 1024
_WHITESPACE = re.compile(rb"[\x00\t\n\x0c\r ]")


def decode_stream_data(
    raw: bytes,
    filters: Sequence[str],
    parms: Sequence[Optional[Dict[str, Any]]],
    max_output: int,
) -> bytes:
    """
    Apply a filter chain left to right.

    ``parms`` is aligned with ``filters``; missing entries mean no
    parameters.
    """
    data = raw
    for index, name in enumerate(filters):
        name = FILTER_ALIASES.get(name, name)
        params = parms[index] if index < len(parms) else None
        params = params or {}

        if name == "FlateDecode":
            data = _flate_decode(data, max_output)
            data = _apply_predictor(data, params, max_output)
        elif name == "ASCIIHexDecode":
            data = _ascii_hex_decode(data)
        elif name == "ASCII85Decode":
            data = _ascii85_decode(data)
        elif name == "RunLengthDecode":
            data = _run_length_decode(data, max_output)
        else:
            raise StreamDecodeError(f"unsupported filter /{name}")

        if len(data) > max_output:
            raise StreamDecodeError(
                f"decoded stream exceeds {max_output} bytes"
            )
    return data


# ---------------------------------------------------------------------------
# FlateDecode
# ---------------------------------------------------------------------------

def _flate_decode(data: bytes, max_output: int) -> bytes:
    decompressor = zlib.decompressobj()
    output = bytearray()
    pending = data

    try:
        while True:
            budget = max_output - len(output) + 1
            chunk = decompressor.decompress(pending, min(budget, _CHUNK_SIZE))
            output += chunk
            if len(output) > max_output:
                raise StreamDecodeError(
                    f"decoded stream exceeds {max_output} bytes"
                )
            pending = decompressor.unconsumed_tail
            if decompressor.eof or (not pending and not chunk):
                break
    except zlib.error as exc:
        raise StreamDecodeError(f"corrupt Flate data: {exc}") from exc

    if not decompressor.eof:
        raise StreamDecodeError("truncated Flate data")
    return bytes(output)


def _apply_predictor(data: bytes, params: Dict[str, Any], max_output: int) -> bytes:
    predictor = _int_param(params, "Predictor", 1)
    if predictor == 1:
        return data

    colors = _int_param(params, "Colors", 1)
    bits = _int_param(params, "BitsPerComponent", 8)
    columns = _int_param(params, "Columns", 1)
    if colors < 1 or columns < 1 or bits not in (1, 2, 4, 8, 16):
        raise StreamDecodeError("invalid predictor parameters")
    if (colors * bits * columns + 7) // 8 > max_output:
        raise StreamDecodeError(
            f"predictor row of {columns} columns exceeds {max_output} bytes"
        )

    if predictor == 2:
        if bits != 8:
            raise StreamDecodeError("TIFF predictor supports 8 bits per component only")
        return _tiff_predictor(data, colors, columns)
    if 10 <= predictor <= 15:
        return _png_predictor(data, colors, bits, columns)
    raise StreamDecodeError(f"unsupported predictor {predictor}")


def _png_predictor(data: bytes, colors: int, bits: int, columns: int) -> bytes:
    bytes_per_pixel = max(1, colors * bits // 8)
    row_length = (colors * bits * columns + 7) // 8
    stride = row_length + 1

    if len(data) % stride:
        raise StreamDecodeError(
            f"PNG predictor data of {len(data)} bytes is not a whole number "
            f"of {stride}-byte rows"
        )

    output = bytearray()
    previous = bytearray(row_length)

    for offset in range(0, len(data), stride):
        row = data[offset:offset + stride]
        kind = row[0]
        current = bytearray(row[1:])

        if kind == 0:
            pass
        elif kind == 1:
            for i in range(bytes_per_pixel, row_length):
                current[i] = (current[i] + current[i - bytes_per_pixel]) & 0xFF
        elif kind == 2:
            for i in range(row_length):
                current[i] = (current[i] + previous[i]) & 0xFF
        elif kind == 3:
            for i in range(row_length):
                left = current[i - bytes_per_pixel] if i >= bytes_per_pixel else 0
                current[i] = (current[i] + ((left + previous[i]) >> 1)) & 0xFF
        elif kind == 4:
            for i in range(row_length):
                left = current[i - bytes_per_pixel] if i >= bytes_per_pixel else 0
                up_left = previous[i - bytes_per_pixel] if i >= bytes_per_pixel else 0
                current[i] = (current[i] + _paeth(left, previous[i], up_left)) & 0xFF
        else:
            raise StreamDecodeError(f"invalid PNG row filter {kind}")

        output += current
        previous = current

    return bytes(output)


def _paeth(left: int, up: int, up_left: int) -> int:
    estimate = left + up - up_left
    dist_left = abs(estimate - left)
    dist_up = abs(estimate - up)
    dist_up_left = abs(estimate - up_left)
    if dist_left <= dist_up and dist_left <= dist_up_left:
        return left
    if dist_up <= dist_up_left:
        return up
    return up_left


def _tiff_predictor(data: bytes, colors: int, columns: int) -> bytes:
    row_length = colors * columns
    output = bytearray(data)
    for row_start in range(0, len(output), row_length):
        row_end = min(row_start + row_length, len(output))
        for i in range(row_start + colors, row_end):
            output[i] = (output[i] + output[i - colors]) & 0xFF
    return bytes(output)


def _int_param(params: Dict[str, Any], key: str, default: int) -> int:
    value = params.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise StreamDecodeError(f"/{key} must be an integer")
    return value


# ---------------------------------------------------------------------------
# ASCII filters
# ---------------------------------------------------------------------------

def _ascii_hex_decode(data: bytes) -> bytes:
    end = data.find(b">")
    if end != -1:
        data = data[:end]
    digits = _WHITESPACE.sub(b"", data)
    if len(digits) % 2:
        digits += b"0"
    try:
        return binascii.unhexlify(digits)
    except (binascii.Error, ValueError) as exc:
        raise StreamDecodeError(f"corrupt ASCIIHex data: {exc}") from exc


def _ascii85_decode(data: bytes) -> bytes:
    data = _WHITESPACE.sub(b"", data)
    if data.startswith(b"<~"):
        data = data[2:]
    end = data.find(b"~>")
    if end != -1:
        data = data[:end]
    try:
        return base64.a85decode(data)
    except ValueError as exc:
        raise StreamDecodeError(f"corrupt ASCII85 data: {exc}") from exc


# ---------------------------------------------------------------------------
# RunLengthDecode
# ---------------------------------------------------------------------------

def _run_length_decode(data: bytes, max_output: int) -> bytes:
    output = bytearray()
    pos = 0
    size = len(data)

    while pos < size:
        length = data[pos]
        pos += 1
        if length == 128:
            break
        if length < 128:
            literal = data[pos:pos + length + 1]
            if len(literal) != length + 1:
                raise StreamDecodeError("truncated RunLength data")
            output += literal
            pos += length + 1
        else:
            if pos >= size:
                raise StreamDecodeError("truncated RunLength data")
            output += bytes([data[pos]]) * (257 - length)
            pos += 1
        if len(output) > max_output:
            raise StreamDecodeError(f"decoded stream exceeds {max_output} bytes")

    return bytes(output)


def normalize_filter_chain(filters: Any, parms: Any) -> tuple:
    """
    Normalise /Filter and /DecodeParms (single value or array) into two
    aligned lists. Values must already be resolved.
    """
    if filters is None:
        names: List[str] = []
    elif isinstance(filters, list):
        names = [str(item) for item in filters]
    else:
        names = [str(filters)]

    if parms is None:
        params: List[Optional[Dict[str, Any]]] = []
    elif isinstance(parms, list):
        params = [item if isinstance(item, dict) else None for item in parms]
    elif isinstance(parms, dict):
        params = [parms]
    else:
        params = []

    return names, params


__all__ = [
    "FILTER_ALIASES",
    "decode_stream_data",
    "normalize_filter_chain",
]
