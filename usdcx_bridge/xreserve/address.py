"""Stacks recipient addresses.

Stacks addresses use c32check encoding: ``S`` + version character +
Crockford base32 of ``hash160 || checksum``, where the checksum is the
first 4 bytes of ``sha256(sha256(version || hash160))``.

xReserve takes the recipient as ``bytes32``:

- byte 11 is the c32 version
- bytes 12-31 are the hash160
- everything else is zero

- `c32check <https://github.com/stacks-network/c32check>`__
"""

import hashlib
import logging
import re
from dataclasses import dataclass

from usdcx_bridge.errors import REASON_MALFORMED_ADDRESS, REASON_WRONG_NETWORK, InvalidAddress
from usdcx_bridge.xreserve.constants import StacksNetwork

logger = logging.getLogger(__name__)

#: Crockford base32 without I, L, O, U
C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

#: Single signature mainnet address, ``SP``
VERSION_MAINNET_SINGLE_SIG = 22

#: Multisig mainnet address, ``SM``
VERSION_MAINNET_MULTI_SIG = 20

#: Single signature testnet address, ``ST``
VERSION_TESTNET_SINGLE_SIG = 26

#: Multisig testnet address, ``SN``
VERSION_TESTNET_MULTI_SIG = 21

#: Which network each address version belongs to
VERSION_NETWORKS: dict[int, StacksNetwork] = {
    VERSION_MAINNET_SINGLE_SIG: StacksNetwork.mainnet,
    VERSION_MAINNET_MULTI_SIG: StacksNetwork.mainnet,
    VERSION_TESTNET_SINGLE_SIG: StacksNetwork.testnet,
    VERSION_TESTNET_MULTI_SIG: StacksNetwork.testnet,
}

#: Where the version byte sits in the encoded recipient
RECIPIENT_VERSION_OFFSET = 11

#: Shape check before we do the checksum
STACKS_ADDRESS_PATTERN = re.compile(r"^S[PMTN][0-9A-HJKMNP-TV-Z]+$")

_PREFIX_NETWORKS = {
    "SP": StacksNetwork.mainnet,
    "SM": StacksNetwork.mainnet,
    "ST": StacksNetwork.testnet,
    "SN": StacksNetwork.testnet,
}


@dataclass(slots=True, frozen=True)
class AddressValidation:
    """Result of :py:func:`validate_stacks_address_for_network`."""

    valid: bool

    #: Human readable explanation when not valid
    reason: str | None = None

    #: ``wrong_network`` or ``malformed_address``
    reason_code: str | None = None

    #: Network the prefix points to, if any
    detected_network: StacksNetwork | None = None

    def raise_for_invalid(self):
        if not self.valid:
            raise InvalidAddress(self.reason, self.reason_code)


def c32_encode(data: bytes) -> str:
    """Crockford base32 encode.

    Each leading zero byte becomes one leading ``0`` character.
    """
    value = int.from_bytes(data, "big")
    chars = []
    while value > 0:
        value, remainder = divmod(value, 32)
        chars.append(C32_ALPHABET[remainder])
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "0" * leading_zeros + "".join(reversed(chars))


def c32_decode(encoded: str) -> bytes:
    """Crockford base32 decode.

    Each leading ``0`` character becomes one leading zero byte.

    :raise ValueError:
        Character outside the alphabet
    """
    value = 0
    for char in encoded:
        index = C32_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"Invalid c32 character {char!r}")
        value = value * 32 + index
    leading_zeros = len(encoded) - len(encoded.lstrip("0"))
    body = value.to_bytes((value.bit_length() + 7) // 8, "big") if value else b""
    return b"\x00" * leading_zeros + body


def c32_normalize(encoded: str) -> str:
    """Upper case and map the Crockford look-alikes, ``O`` to ``0`` and ``I``, ``L`` to ``1``."""
    return encoded.upper().replace("O", "0").replace("L", "1").replace("I", "1")


def c32_checksum(version: int, hash160: bytes) -> bytes:
    payload = bytes([version]) + hash160
    return hashlib.sha256(hashlib.sha256(payload).digest()).digest()[0:4]


def c32_address(version: int, hash160: bytes) -> str:
    """Build a Stacks address from its version and hash160.

    :param version:
        c32 version, 0-31

    :param hash160:
        20 byte public key or script hash
    """
    assert 0 <= version < 32, f"Bad version {version}"
    assert len(hash160) == 20, f"hash160 must be 20 bytes, got {len(hash160)}"
    return "S" + C32_ALPHABET[version] + c32_encode(hash160 + c32_checksum(version, hash160))


def c32_address_decode(address: str) -> tuple[int, bytes]:
    """Parse and checksum a Stacks address.

    Contract principals like ``SP...usdcx-v1`` are not accepted, only the
    standard principal part.

    Lower case input is accepted, as c32check normalises it.

    :return:
        Tuple (version, hash160)

    :raise InvalidAddress:
        Bad shape, unknown character or checksum mismatch
    """
    if not isinstance(address, str) or not STACKS_ADDRESS_PATTERN.match(c32_normalize(address)):
        raise InvalidAddress(f"Not a Stacks address: {address!r}")

    address = c32_normalize(address)

    version = C32_ALPHABET.index(address[1])
    data = c32_decode(address[2:])
    if len(data) != 24:
        raise InvalidAddress(f"Stacks address {address} has wrong length")

    hash160, checksum = data[0:20], data[20:]
    if c32_checksum(version, hash160) != checksum:
        raise InvalidAddress(f"Stacks address {address} has a bad checksum")

    return version, hash160


def detect_stacks_network(recipient: str) -> StacksNetwork | None:
    """Guess the network from the address prefix.

    Does not validate the rest of the address.
    """
    if not isinstance(recipient, str):
        return None
    return _PREFIX_NETWORKS.get(recipient[0:2].upper())


def validate_stacks_address_for_network(recipient: str, network: StacksNetwork) -> AddressValidation:
    """Check a recipient can receive on a given Stacks network.

    Wrong network and malformed addresses are told apart by ``reason_code``.
    """
    detected = detect_stacks_network(recipient)

    if detected is None:
        if network == StacksNetwork.mainnet:
            reason = "Invalid mainnet Stacks address format. Must start with SP or SM."
        else:
            reason = "Invalid testnet Stacks address format. Must start with ST or SN."
        return AddressValidation(valid=False, reason=reason, reason_code=REASON_MALFORMED_ADDRESS)

    if detected != network:
        if detected == StacksNetwork.testnet:
            reason = "This is a testnet address (starts with ST/SN). Switch to testnet or use a mainnet address (SP/SM)."
        else:
            reason = "This is a mainnet address (starts with SP/SM). Switch to mainnet or use a testnet address (ST/SN)."
        return AddressValidation(valid=False, reason=reason, reason_code=REASON_WRONG_NETWORK, detected_network=detected)

    try:
        c32_address_decode(recipient)
    except InvalidAddress as e:
        return AddressValidation(valid=False, reason=str(e), reason_code=REASON_MALFORMED_ADDRESS, detected_network=detected)

    return AddressValidation(valid=True, detected_network=detected)


def is_valid_stacks_address(recipient: str, network: StacksNetwork | None = None) -> bool:
    """Check the address, optionally against a network."""
    if network is not None:
        return validate_stacks_address_for_network(recipient, network).valid

    try:
        c32_address_decode(recipient)
    except InvalidAddress:
        return False
    return True


def encode_stacks_recipient(recipient: str) -> bytes:
    """Encode a Stacks address as xReserve ``remoteRecipient``.

    Example::

        encoded = encode_stacks_recipient("ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM")
        assert encoded[11] == 26

    :return:
        32 bytes

    :raise InvalidAddress:
        Not a valid mainnet or testnet address
    """
    version, hash160 = c32_address_decode(recipient)
    if version not in VERSION_NETWORKS:
        raise InvalidAddress(f"Stacks address {recipient} has unsupported version {version}")
    encoded = bytes(RECIPIENT_VERSION_OFFSET) + bytes([version]) + hash160
    assert len(encoded) == 32
    return encoded


def decode_stacks_recipient(encoded: bytes) -> str:
    """Recover the Stacks address from xReserve ``remoteRecipient``.

    :raise InvalidAddress:
        Wrong length, non-zero padding or unknown version
    """
    encoded = bytes(encoded)
    if len(encoded) != 32:
        raise InvalidAddress(f"Encoded recipient must be 32 bytes, got {len(encoded)}")

    if any(encoded[0:RECIPIENT_VERSION_OFFSET]):
        raise InvalidAddress(f"Encoded recipient has non-zero padding: 0x{encoded.hex()}")

    version = encoded[RECIPIENT_VERSION_OFFSET]
    if version not in VERSION_NETWORKS:
        raise InvalidAddress(f"Encoded recipient has unknown version {version}")

    return c32_address(version, encoded[RECIPIENT_VERSION_OFFSET + 1 :])
