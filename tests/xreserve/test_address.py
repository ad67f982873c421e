"""Stacks address validation and xReserve recipient encoding."""

import secrets

import pytest

from usdcx_bridge.errors import REASON_MALFORMED_ADDRESS, REASON_WRONG_NETWORK, InvalidAddress
from usdcx_bridge.xreserve.address import (
    VERSION_MAINNET_MULTI_SIG,
    VERSION_MAINNET_SINGLE_SIG,
    VERSION_NETWORKS,
    VERSION_TESTNET_MULTI_SIG,
    VERSION_TESTNET_SINGLE_SIG,
    c32_address,
    c32_address_decode,
    c32_decode,
    c32_encode,
    decode_stacks_recipient,
    detect_stacks_network,
    encode_stacks_recipient,
    is_valid_stacks_address,
    validate_stacks_address_for_network,
)
from usdcx_bridge.xreserve.constants import StacksNetwork

TESTNET_HASH160 = bytes.fromhex("6d78de7b0625dfbfc16c3a8a5735f6dc3dc3f2ce")


def test_c32_leading_zeros():
    assert c32_encode(b"\x00\x01") == "01"
    assert c32_decode("01") == b"\x00\x01"
    assert c32_decode(c32_encode(b"\x00\x00\xff\x10")) == b"\x00\x00\xff\x10"


def test_c32_decode_bad_character():
    with pytest.raises(ValueError):
        c32_decode("0OIL")


def test_decode_testnet_address(testnet_recipient):
    version, hash160 = c32_address_decode(testnet_recipient)
    assert version == VERSION_TESTNET_SINGLE_SIG
    assert hash160 == TESTNET_HASH160
    assert c32_address(version, hash160) == testnet_recipient


def test_mainnet_address(mainnet_recipient):
    assert is_valid_stacks_address(mainnet_recipient)
    assert is_valid_stacks_address(mainnet_recipient, StacksNetwork.mainnet)
    assert not is_valid_stacks_address(mainnet_recipient, StacksNetwork.testnet)
    assert detect_stacks_network(mainnet_recipient) == StacksNetwork.mainnet


def test_bad_checksum(testnet_recipient):
    tampered = testnet_recipient[:-1] + ("N" if testnet_recipient[-1] != "N" else "P")
    with pytest.raises(InvalidAddress, match="checksum"):
        c32_address_decode(tampered)

    result = validate_stacks_address_for_network(tampered, StacksNetwork.testnet)
    assert not result.valid
    assert result.reason_code == REASON_MALFORMED_ADDRESS
    assert result.detected_network == StacksNetwork.testnet


def test_wrong_network_is_not_malformed(testnet_recipient, mainnet_recipient):
    result = validate_stacks_address_for_network(testnet_recipient, StacksNetwork.mainnet)
    assert not result.valid
    assert result.reason_code == REASON_WRONG_NETWORK
    assert result.detected_network == StacksNetwork.testnet
    assert "testnet address" in result.reason

    result = validate_stacks_address_for_network(mainnet_recipient, StacksNetwork.testnet)
    assert result.reason_code == REASON_WRONG_NETWORK
    assert "mainnet address" in result.reason

    with pytest.raises(InvalidAddress) as exc_info:
        result.raise_for_invalid()
    assert exc_info.value.reason_code == REASON_WRONG_NETWORK


@pytest.mark.parametrize("recipient", ["", "0x" + "ab" * 20, "SX1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM", "ST1", None])
def test_malformed_addresses(recipient):
    result = validate_stacks_address_for_network(recipient, StacksNetwork.testnet)
    assert not result.valid
    assert result.reason_code == REASON_MALFORMED_ADDRESS
    assert not is_valid_stacks_address(recipient)


def test_contract_principal_rejected():
    assert not is_valid_stacks_address("ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM.usdcx-v1")


def test_encode_recipient(testnet_recipient):
    encoded = encode_stacks_recipient(testnet_recipient)
    assert len(encoded) == 32
    assert encoded[0:11] == bytes(11)
    assert encoded[11] == VERSION_TESTNET_SINGLE_SIG
    assert encoded[12:] == TESTNET_HASH160
    assert decode_stacks_recipient(encoded) == testnet_recipient


def test_encode_mainnet_recipient(mainnet_recipient):
    encoded = encode_stacks_recipient(mainnet_recipient)
    assert encoded[11] == 22
    assert decode_stacks_recipient(encoded) == mainnet_recipient


def test_encode_invalid_recipient():
    with pytest.raises(InvalidAddress):
        encode_stacks_recipient("not-an-address")


def test_decode_bad_recipient(testnet_recipient):
    encoded = encode_stacks_recipient(testnet_recipient)

    with pytest.raises(InvalidAddress, match="32 bytes"):
        decode_stacks_recipient(encoded[1:])

    with pytest.raises(InvalidAddress, match="padding"):
        decode_stacks_recipient(b"\x01" + encoded[1:])

    with pytest.raises(InvalidAddress, match="version"):
        decode_stacks_recipient(encoded[0:11] + bytes([5]) + encoded[12:])


@pytest.mark.parametrize(
    "version, prefix",
    [
        (VERSION_MAINNET_SINGLE_SIG, "SP"),
        (VERSION_MAINNET_MULTI_SIG, "SM"),
        (VERSION_TESTNET_SINGLE_SIG, "ST"),
        (VERSION_TESTNET_MULTI_SIG, "SN"),
    ],
)
def test_recipient_round_trip_all_versions(version, prefix):
    """Random hash160 values survive address and recipient encoding."""
    for _ in range(20):
        hash160 = secrets.token_bytes(20)
        address = c32_address(version, hash160)
        assert address.startswith(prefix)
        assert c32_address_decode(address) == (version, hash160)

        encoded = encode_stacks_recipient(address)
        assert encoded[11] == version
        assert encoded[12:] == hash160
        assert decode_stacks_recipient(encoded) == address

        network = VERSION_NETWORKS[version]
        assert detect_stacks_network(address) == network
        assert validate_stacks_address_for_network(address, network).valid


def test_leading_zero_hash160():
    hash160 = bytes(3) + secrets.token_bytes(17)
    address = c32_address(VERSION_TESTNET_SINGLE_SIG, hash160)
    assert c32_address_decode(address) == (VERSION_TESTNET_SINGLE_SIG, hash160)


def test_lowercase_address_normalised(testnet_recipient):
    """Lower case input decodes to the same principal, like c32check does."""
    lowercase = testnet_recipient.lower()
    assert detect_stacks_network(lowercase) == StacksNetwork.testnet
    assert c32_address_decode(lowercase) == (VERSION_TESTNET_SINGLE_SIG, TESTNET_HASH160)
    assert validate_stacks_address_for_network(lowercase, StacksNetwork.testnet).valid
    assert encode_stacks_recipient(lowercase) == encode_stacks_recipient(testnet_recipient)
