"""Encoded polyline codec (Google / OSRM / OpenRouteService format).

Each coordinate is stored as a zig-zag encoded delta from the previous
point, split into 5-bit chunks offset by 63. Latitude comes before
longitude in the encoding; the functions here take and return
``(lng, lat)`` pairs to match GeoJSON.
"""

from typing import Iterable

from tripplanner.models.core import LngLat


def _read_value(encoded: str, index: int) -> tuple[int, int]:
    """Read one zig-zag value starting at ``index``; return (value, next_index)."""
    shift = 0
    result = 0
    while True:
        if index >= len(encoded):
            raise ValueError(f"Truncated polyline at position {index}")
        b = ord(encoded[index]) - 63
        if not 0 <= b <= 63:
            raise ValueError(f"Invalid polyline character {encoded[index]!r} at position {index}")
        index += 1
        result |= (b & 0x1f) << shift
        shift += 5
        if b < 0x20:
            break
    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode_polyline(encoded: str, precision: int = 5) -> list[LngLat]:
    """Decode a polyline string into ``(lng, lat)`` coordinates."""
    if not encoded:
        return []

    factor = 10 ** precision
    points: list[LngLat] = []
    index = 0
    lat = 0
    lng = 0

    while index < len(encoded):
        d_lat, index = _read_value(encoded, index)
        d_lng, index = _read_value(encoded, index)
        lat += d_lat
        lng += d_lng
        points.append((lng / factor, lat / factor))

    return points


def encode_polyline(coordinates: Iterable[LngLat], precision: int = 5) -> str:
    """Encode ``(lng, lat)`` coordinates into a polyline string."""
    factor = 10 ** precision
    result = []
    prev_lat = 0
    prev_lng = 0

    for lng, lat in coordinates:
        lat_int = int(round(lat * factor))
        lng_int = int(round(lng * factor))

        for delta in (lat_int - prev_lat, lng_int - prev_lng):
            val = ~(delta << 1) if delta < 0 else delta << 1
            while val >= 0x20:
                result.append(chr((0x20 | (val & 0x1f)) + 63))
                val >>= 5
            result.append(chr(val + 63))

        prev_lat = lat_int
        prev_lng = lng_int

    return "".join(result)
