"""ABI loading from the bundled ABI files.

Provides functions to load ABI files and construct :py:class:`web3.contract.Contract` types.
The results are cached for the speedup.

Bundled files live in ``usdcx_bridge/abi/``:

- ``ERC20.json``: the subset of ERC-20 we call on USDC
- ``XReserve.json``: ``depositToRemote()`` and the ``MessageSent`` event
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Type

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

# How big are our ABI and contract caches
_CACHE_SIZE = 64


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str) -> list[dict]:
    """Reads a embedded ABI file and returns it.

    Example::

        abi = get_abi_by_filename("XReserve.json")

    :param fname:
        Filename under the bundled ``abi`` folder

    :return:
        ABI as a list of function and event entries
    """
    here = Path(__file__).resolve().parent
    abi_path = here / "abi" / Path(fname)
    with open(abi_path, "rt", encoding="utf-8") as f:
        abi = json.load(f)

    # Solc artifact or bare Etherscan ABI
    if isinstance(abi, dict):
        abi = abi["abi"]
    return abi


@lru_cache(maxsize=_CACHE_SIZE)
def get_contract(web3: Web3, fname: str) -> Type[Contract]:
    """Get Contract proxy class from ABI JSON file.

    Any results are cached. Web3 connection is part of the cache key.
    """
    return web3.eth.contract(abi=get_abi_by_filename(fname))


def get_deployed_contract(web3: Web3, fname: str, address: HexAddress | str) -> Contract:
    """Get a Contract proxy object for a contract deployed at a specific address.

    :param web3:
        Web3 instance

    :param fname:
        Bundled ABI filename, e.g. ``ERC20.json``

    :param address:
        Address of the deployed contract, any case

    :return:
        `web3.contract.Contract` proxy
    """
    assert isinstance(web3, Web3), f"Got {type(web3)} instead of Web3"
    assert address, "get_deployed_contract() address was None"
    Contract = get_contract(web3, fname)
    return Contract(Web3.to_checksum_address(address))
