"""Fernet symmetric encryption for queued payloads at rest."""

from __future__ import annotations

from cryptography.fernet import Fernet


def generate_key() -> str:
    return Fernet.generate_key().decode("utf-8")


def _get_fernet(key: str) -> Fernet:
    if not key:
        raise RuntimeError("FERNET_KEY not set. Generate one with: fieldmedia keygen")
    return Fernet(key.encode("utf-8"))


def encrypt_bytes(data: bytes, key: str) -> bytes:
    if not data:
        return b""
    return _get_fernet(key).encrypt(data)


def decrypt_bytes(data: bytes, key: str) -> bytes:
    if not data:
        return b""
    return _get_fernet(key).decrypt(data)
