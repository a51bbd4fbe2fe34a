import hashlib

def sha256(data: bytes) -> bytes:
    """Returns SHA256 hash of bytes."""
    return hashlib.sha256(data).digest()

def sha256_hex(data: bytes) -> str:
    """Returns SHA256 hash of bytes as hex string."""
    return sha256(data).hex()

def hash_storage_key(address: str, key: str) -> str:
    """
    Returns the hashed storage key: SHA256(address || key) as 64 lowercase hex chars.

    Hashed keys are uniformly distributed, so the snapshot creator partitions
    the key space by hashed-key ranges.
    """
    raw = bytes.fromhex(address[2:]) + bytes.fromhex(key[2:])
    return sha256_hex(raw)
