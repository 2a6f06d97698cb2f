"""Validation and encoding of Bech32m ledger addresses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from .errors import ErrorKind

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32M_CONST = 0x2BC830A3
CHECKSUM_LENGTH = 6
DATA_PART_LENGTH = 54

_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


class Network(str, Enum):
    MAINNET = "mainnet"
    STOKENET = "stokenet"

    @property
    def hrp_suffix(self) -> str:
        return "rdx" if self is Network.MAINNET else "tdx_2_"


class EntityType(str, Enum):
    ACCOUNT = "account"
    RESOURCE = "resource"
    COMPONENT = "component"
    PACKAGE = "package"


@dataclass(frozen=True, slots=True)
class AddressValidationResult:
    address: str
    is_valid: bool
    entity_type: EntityType | None = None
    network: Network | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None


def _polymod(values: Iterable[int]) -> int:
    checksum = 1
    for value in values:
        top = checksum >> 25
        checksum = (checksum & 0x1FFFFFF) << 5 ^ value
        for index, generator in enumerate(_GENERATOR):
            if (top >> index) & 1:
                checksum ^= generator
    return checksum


def _expand_hrp(hrp: str) -> list[int]:
    return [ord(char) >> 5 for char in hrp] + [0] + [ord(char) & 31 for char in hrp]


def verify_checksum(hrp: str, data: Sequence[int]) -> bool:
    return _polymod(_expand_hrp(hrp) + list(data)) == BECH32M_CONST


def create_checksum(hrp: str, data: Sequence[int]) -> list[int]:
    polymod = _polymod(_expand_hrp(hrp) + list(data) + [0] * CHECKSUM_LENGTH) ^ BECH32M_CONST
    return [(polymod >> 5 * (5 - index)) & 31 for index in range(CHECKSUM_LENGTH)]


def convert_bits(data: Iterable[int], from_bits: int, to_bits: int, *, pad: bool = True) -> list[int]:
    """Regroup a sequence of ``from_bits`` integers into ``to_bits`` integers."""

    accumulator = 0
    bits = 0
    result: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValueError(f"Value {value} does not fit in {from_bits} bits")
        accumulator = (accumulator << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((accumulator >> bits) & max_value)
    if pad:
        if bits:
            result.append((accumulator << (to_bits - bits)) & max_value)
    elif bits >= from_bits or ((accumulator << (to_bits - bits)) & max_value):
        raise ValueError("Invalid padding")
    return result


def encode_address(entity: EntityType, network: Network, payload: bytes) -> str:
    hrp = f"{entity.value}_{network.hrp_suffix}"
    data = convert_bits(payload, 8, 5)
    combined = data + create_checksum(hrp, data)
    return f"{hrp}1{''.join(CHARSET[value] for value in combined)}"


def decode_address(address: str) -> tuple[str, bytes]:
    """Return the human readable part and payload bytes of a valid address."""

    separator = address.rfind("1")
    if separator < 1:
        raise ValueError("Address has no separator")
    hrp, data_part = address[:separator], address[separator + 1 :]
    try:
        values = [CHARSET.index(char) for char in data_part]
    except ValueError as exc:
        raise ValueError("Address contains characters outside the Bech32 charset") from exc
    if len(values) < CHECKSUM_LENGTH or not verify_checksum(hrp, values):
        raise ValueError("Invalid Bech32m checksum")
    return hrp, bytes(convert_bits(values[:-CHECKSUM_LENGTH], 5, 8, pad=False))


class AddressValidator:
    """Validates ``<entity>_<network>1<data>`` addresses for one network."""

    def __init__(self, network: Network = Network.STOKENET) -> None:
        self.network = network

    def validate(self, address: object) -> AddressValidationResult:
        if not isinstance(address, str) or not address.strip():
            return self._invalid(str(address or ""), "Address must be a non-empty string")

        address = address.strip()
        if address != address.lower():
            return self._invalid(address, "Address must be lowercase")

        separator = address.rfind("1")
        if separator < 1:
            return self._invalid(address, "Address is missing the '1' separator")
        hrp, data_part = address[:separator], address[separator + 1 :]

        entity_text, _, network_text = hrp.partition("_")
        try:
            entity = EntityType(entity_text)
        except ValueError:
            return self._invalid(address, f"Unknown address type '{entity_text}'")

        network = next((item for item in Network if item.hrp_suffix == network_text), None)
        if network is None:
            return self._invalid(address, f"Unknown network prefix '{network_text}'", entity)
        if network is not self.network:
            return self._invalid(
                address,
                f"Address belongs to {network.value}, expected {self.network.value}",
                entity,
                network,
            )

        if len(data_part) != DATA_PART_LENGTH:
            return self._invalid(
                address,
                f"Data part must be {DATA_PART_LENGTH} characters, got {len(data_part)}",
                entity,
                network,
            )

        invalid = sorted({char for char in data_part if char not in CHARSET})
        if invalid:
            return self._invalid(
                address, f"Invalid characters in data part: {''.join(invalid)}", entity, network
            )

        if not verify_checksum(hrp, [CHARSET.index(char) for char in data_part]):
            return self._invalid(address, "Invalid Bech32m checksum", entity, network)

        return AddressValidationResult(address=address, is_valid=True, entity_type=entity, network=network)

    def validate_account(self, address: object) -> AddressValidationResult:
        result = self.validate(address)
        if result.is_valid and result.entity_type is not EntityType.ACCOUNT:
            return self._invalid(
                result.address,
                f"Expected an account address, got a {result.entity_type.value} address",
                result.entity_type,
                result.network,
            )
        return result

    @staticmethod
    def _invalid(
        address: str,
        message: str,
        entity: EntityType | None = None,
        network: Network | None = None,
    ) -> AddressValidationResult:
        return AddressValidationResult(
            address=address,
            is_valid=False,
            entity_type=entity,
            network=network,
            error_kind=ErrorKind.INVALID_ADDRESS,
            message=message,
        )
