from __future__ import annotations

import hashlib
import hmac
from typing import Optional

from Crypto.Hash import keccak


P = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
A = 0
B = 7
G = (
    55066263022277343669578718895168534326250603453777594175500187360389116729240,
    32670510020758816978083085130507043184471273380659243275938904335757337482424,
)

CKB_HASH_PERSONALIZATION = b"ckb-default-hash"
SIGNATURE_SIZE = 65

Point = Optional[tuple[int, int]]


def _mod_inv(value: int, modulus: int) -> int:
    return pow(value, -1, modulus)


def _is_on_curve(point: Point) -> bool:
    if point is None:
        return True
    x, y = point
    return (y * y - (x * x * x + A * x + B)) % P == 0


def _point_add(p1: Point, p2: Point) -> Point:
    if p1 is None:
        return p2
    if p2 is None:
        return p1

    x1, y1 = p1
    x2, y2 = p2

    if x1 == x2 and (y1 + y2) % P == 0:
        return None

    if p1 == p2:
        slope = ((3 * x1 * x1 + A) * _mod_inv((2 * y1) % P, P)) % P
    else:
        slope = ((y2 - y1) * _mod_inv((x2 - x1) % P, P)) % P

    x3 = (slope * slope - x1 - x2) % P
    y3 = (slope * (x1 - x3) - y1) % P
    point = (x3, y3)

    if not _is_on_curve(point):
        raise ValueError("Point operation produced invalid curve point")
    return point


def _point_mul(scalar: int, point: Point = G) -> Point:
    if scalar % N == 0 or point is None:
        return None

    scalar = scalar % N
    result: Point = None
    addend: Point = point

    while scalar:
        if scalar & 1:
            result = _point_add(result, addend)
        addend = _point_add(addend, addend)
        scalar >>= 1

    return result


def _deterministic_k(private_key: int, message_hash: bytes) -> int:
    x = private_key.to_bytes(32, "big")
    h1 = message_hash
    v = b"\x01" * 32
    k = b"\x00" * 32

    k = hmac.new(k, v + b"\x00" + x + h1, hashlib.sha256).digest()
    v = hmac.new(k, v, hashlib.sha256).digest()
    k = hmac.new(k, v + b"\x01" + x + h1, hashlib.sha256).digest()
    v = hmac.new(k, v, hashlib.sha256).digest()

    while True:
        t = b""
        while len(t) < 32:
            v = hmac.new(k, v, hashlib.sha256).digest()
            t += v

        candidate = int.from_bytes(t[:32], "big")
        if 1 <= candidate < N:
            return candidate

        k = hmac.new(k, v + b"\x00", hashlib.sha256).digest()
        v = hmac.new(k, v, hashlib.sha256).digest()


def _lift_x(x: int, odd: bool) -> tuple[int, int]:
    y_sq = (pow(x, 3, P) + B) % P
    y = pow(y_sq, (P + 1) // 4, P)
    if (y * y) % P != y_sq:
        raise ValueError("x coordinate is not on secp256k1")
    if (y % 2 == 1) != odd:
        y = P - y
    return x, y


def normalize_private_key(private_key_hex: str) -> int:
    text = str(private_key_hex).strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if len(text) != 64:
        raise ValueError("Private key must be 32 bytes of hex")
    try:
        private_key = int(text, 16)
    except ValueError as exc:
        raise ValueError("Private key is not valid hex") from exc
    if not 1 <= private_key < N:
        raise ValueError("Invalid private key")
    return private_key


def _public_point(private_key_hex: str) -> tuple[int, int]:
    point = _point_mul(normalize_private_key(private_key_hex), G)
    if point is None:
        raise ValueError("Could not derive public key")
    return point


def private_key_to_public_key(private_key_hex: str) -> bytes:
    return compress_public_key(_public_point(private_key_hex))


def private_key_to_uncompressed_public_key(private_key_hex: str) -> bytes:
    x, y = _public_point(private_key_hex)
    return b"\x04" + x.to_bytes(32, "big") + y.to_bytes(32, "big")


def compress_public_key(point: tuple[int, int]) -> bytes:
    x, y = point
    prefix = 0x02 if y % 2 == 0 else 0x03
    return bytes([prefix]) + x.to_bytes(32, "big")


def decompress_public_key(public_key_bytes: bytes) -> tuple[int, int]:
    if len(public_key_bytes) != 33:
        raise ValueError("Compressed public key must be 33 bytes")

    prefix = public_key_bytes[0]
    if prefix not in (0x02, 0x03):
        raise ValueError("Invalid compressed public key prefix")

    x = int.from_bytes(public_key_bytes[1:], "big")
    point = _lift_x(x, odd=prefix == 0x03)
    if not _is_on_curve(point):
        raise ValueError("Public key is not on secp256k1")
    return point


def sign_recoverable(private_key_hex: str, message_hash: bytes) -> bytes:
    """Sign a 32-byte digest and return ``r || s || recovery_id`` (65 bytes)."""
    if len(message_hash) != 32:
        raise ValueError("Message hash must be 32 bytes")

    private_key = normalize_private_key(private_key_hex)
    z = int.from_bytes(message_hash, "big")
    k = _deterministic_k(private_key, message_hash)

    while True:
        point = _point_mul(k, G)
        if point is None:
            k = (k + 1) % N
            continue

        r = point[0] % N
        if r == 0:
            k = (k + 1) % N
            continue

        s = (_mod_inv(k, N) * (z + r * private_key)) % N
        if s == 0:
            k = (k + 1) % N
            continue

        recovery_id = (point[1] & 1) | (2 if point[0] >= N else 0)
        # Low-S form flips the parity of R.
        if s > N // 2:
            s = N - s
            recovery_id ^= 1

        return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([recovery_id])


def recover_public_key(message_hash: bytes, signature: bytes) -> bytes:
    if len(message_hash) != 32:
        raise ValueError("Message hash must be 32 bytes")
    if len(signature) != SIGNATURE_SIZE:
        raise ValueError("Recoverable signature must be 65 bytes")

    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    recovery_id = signature[64]
    if not (1 <= r < N and 1 <= s < N) or recovery_id > 3:
        raise ValueError("Invalid recoverable signature")

    x = r + N if recovery_id & 2 else r
    if x >= P:
        raise ValueError("Invalid recoverable signature")
    big_r = _lift_x(x, odd=bool(recovery_id & 1))

    z = int.from_bytes(message_hash, "big")
    r_inv = _mod_inv(r, N)
    u1 = (-z * r_inv) % N
    u2 = (s * r_inv) % N
    point = _point_add(_point_mul(u1, G), _point_mul(u2, big_r))
    if point is None:
        raise ValueError("Signature recovers the point at infinity")
    return compress_public_key(point)


def verify_signature(public_key: bytes, message_hash: bytes, signature: bytes) -> bool:
    try:
        return recover_public_key(message_hash, signature) == bytes(public_key)
    except ValueError:
        return False


def ckb_hash(*parts: bytes) -> bytes:
    hasher = hashlib.blake2b(digest_size=32, person=CKB_HASH_PERSONALIZATION)
    for part in parts:
        hasher.update(part)
    return hasher.digest()


def blake160(data: bytes) -> bytes:
    return ckb_hash(data)[:20]


def keccak256(*parts: bytes) -> bytes:
    hasher = keccak.new(digest_bits=256)
    for part in parts:
        hasher.update(part)
    return hasher.digest()


def eth_address_from_public_key(uncompressed_public_key: bytes) -> bytes:
    if len(uncompressed_public_key) != 65 or uncompressed_public_key[0] != 0x04:
        raise ValueError("Uncompressed public key must be 65 bytes with 0x04 prefix")
    return keccak256(uncompressed_public_key[1:])[12:]
