# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, ConfigDict, Field, field_validator

ADDRESS_BYTES = 20
WORD_BYTES = 32


def normalize_hex(value: str, size: int) -> str:
    """Validates a 0x-prefixed fixed-size hex string and returns it lowercased."""
    if not isinstance(value, str) or not value.startswith("0x"):
        raise ValueError(f"expected 0x-prefixed hex string, got {value!r}")
    body = value[2:]
    if len(body) != size * 2:
        raise ValueError(f"expected {size} bytes, got {len(body) // 2}")
    try:
        bytes.fromhex(body)
    except ValueError:
        raise ValueError(f"invalid hex string {value!r}")
    return "0x" + body.lower()


def h256(value: int) -> str:
    """Formats an integer as a 32-byte hex word."""
    return "0x" + value.to_bytes(WORD_BYTES, "big").hex()


class AccountId(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    address: str    # 20-byte account address (0x...)

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        return normalize_hex(v, ADDRESS_BYTES)


class StorageKey(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    account: AccountId
    key: str        # 32-byte slot key (0x...)

    @field_validator("key")
    @classmethod
    def _check_key(cls, v: str) -> str:
        return normalize_hex(v, WORD_BYTES)

    @classmethod
    def of(cls, address: str, key: str) -> 'StorageKey':
        return cls(account=AccountId(address=address), key=key)

    @property
    def address(self) -> str:
        return self.account.address


class StorageWrite(BaseModel):
    """A single write applied to the ledger inside a miniblock."""
    address: str
    key: str
    value: str

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        return normalize_hex(v, ADDRESS_BYTES)

    @field_validator("key", "value")
    @classmethod
    def _check_word(cls, v: str) -> str:
        return normalize_hex(v, WORD_BYTES)


class SnapshotStorageLog(BaseModel):
    """
    Authoritative value of one storage slot as of a snapshot checkpoint.

    l1_batch_number is the batch in which the value was last written at or
    before the checkpoint; enumeration_index is the 1-based order in which the
    key was first written to the ledger.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    key: StorageKey
    value: str
    l1_batch_number: int = Field(alias="l1BatchNumber", ge=0)
    enumeration_index: int = Field(alias="enumerationIndex", ge=1)

    @field_validator("value")
    @classmethod
    def _check_value(cls, v: str) -> str:
        return normalize_hex(v, WORD_BYTES)
