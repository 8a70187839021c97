"""Contract ABIs (JSON form) for the vault, Circle Gateway, ERC20 and Aave v3."""

from __future__ import annotations

from typing import Any


def _param(name: str, type_: str, *, indexed: bool | None = None, components: list | None = None) -> dict[str, Any]:
    param: dict[str, Any] = {"name": name, "type": type_}
    if indexed is not None:
        param["indexed"] = indexed
    if components is not None:
        param["components"] = components
    return param


def _fn(name: str, inputs: list, outputs: list | None = None, mutability: str = "nonpayable") -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs or [],
        "stateMutability": mutability,
    }


def _event(name: str, inputs: list) -> dict[str, Any]:
    return {"type": "event", "name": name, "inputs": inputs, "anonymous": False}


TREASURY_VAULT_ABI: list[dict[str, Any]] = [
    _fn("balanceOf", [_param("user", "address")], [_param("", "uint256")], "view"),
    _fn(
        "getPolicy",
        [_param("user", "address")],
        [
            _param(
                "",
                "tuple",
                components=[
                    _param("yieldThreshold", "uint256"),
                    _param("maxBorrowAmount", "uint256"),
                    _param("enabled", "bool"),
                    _param("strategy", "string"),
                ],
            )
        ],
        "view",
    ),
    _fn(
        "getBorrowedRWA",
        [_param("user", "address")],
        [
            _param(
                "",
                "tuple",
                components=[
                    _param("amount", "uint256"),
                    _param("borrowTime", "uint256"),
                    _param("rwaToken", "address"),
                ],
            )
        ],
        "view",
    ),
    _fn(
        "getVaultStats",
        [],
        [_param("tvl", "uint256"), _param("totalBorrows", "uint256"), _param("numUsers", "uint256")],
        "view",
    ),
    _fn(
        "userDeposits",
        [_param("", "address")],
        [_param("amount", "uint256"), _param("timestamp", "uint256"), _param("active", "bool")],
        "view",
    ),
    _fn(
        "getWithdrawRequest",
        [_param("user", "address")],
        [_param("amount", "uint256"), _param("requestTime", "uint256"), _param("pending", "bool")],
        "view",
    ),
    _fn("getSuiAddress", [_param("user", "address")], [_param("", "bytes32")], "view"),
    # Agent functions
    _fn("borrowRWA", [_param("user", "address"), _param("amount", "uint256"), _param("rwaToken", "address")]),
    _fn("repayRWAFor", [_param("user", "address"), _param("amount", "uint256")]),
    _fn("processWithdraw", [_param("user", "address")]),
    _fn("setSuiAddressForUser", [_param("user", "address"), _param("suiAddress", "bytes32")]),
    # Events
    _event(
        "Deposited",
        [
            _param("user", "address", indexed=True),
            _param("amount", "uint256", indexed=False),
            _param("timestamp", "uint256", indexed=False),
        ],
    ),
]

ERC20_ABI: list[dict[str, Any]] = [
    _fn("balanceOf", [_param("account", "address")], [_param("", "uint256")], "view"),
    _fn("allowance", [_param("owner", "address"), _param("spender", "address")], [_param("", "uint256")], "view"),
    _fn("approve", [_param("spender", "address"), _param("amount", "uint256")], [_param("", "bool")]),
    _fn("transfer", [_param("to", "address"), _param("amount", "uint256")], [_param("", "bool")]),
]

GATEWAY_WALLET_ABI: list[dict[str, Any]] = [
    _fn("deposit", [_param("amount", "uint256")]),
    _fn(
        "deposit",
        [
            _param("amount", "uint256"),
            _param("destinationDomain", "bytes32"),
            _param("mintRecipient", "bytes32"),
        ],
    ),
]

GATEWAY_MINTER_ABI: list[dict[str, Any]] = [
    _fn("mint", [_param("amount", "uint256")]),
    _fn("unifiedBalance", [_param("account", "address")], [_param("", "uint256")], "view"),
]

AAVE_V3_POOL_ABI: list[dict[str, Any]] = [
    _fn(
        "supply",
        [
            _param("asset", "address"),
            _param("amount", "uint256"),
            _param("onBehalfOf", "address"),
            _param("referralCode", "uint16"),
        ],
    ),
    _fn(
        "withdraw",
        [_param("asset", "address"), _param("amount", "uint256"), _param("to", "address")],
        [_param("", "uint256")],
    ),
]

AAVE_V3_DATA_PROVIDER_ABI: list[dict[str, Any]] = [
    _fn(
        "getReserveData",
        [_param("asset", "address")],
        [
            _param("unbacked", "uint256"),
            _param("accruedToTreasuryScaled", "uint256"),
            _param("totalAToken", "uint256"),
            _param("totalStableDebt", "uint256"),
            _param("totalVariableDebt", "uint256"),
            _param("liquidityRate", "uint256"),
            _param("variableBorrowRate", "uint256"),
            _param("stableBorrowRate", "uint256"),
            _param("averageStableBorrowRate", "uint256"),
            _param("liquidityIndex", "uint256"),
            _param("variableBorrowIndex", "uint256"),
            _param("lastUpdateTimestamp", "uint40"),
        ],
        "view",
    ),
]

CCTP_TOKEN_MESSENGER_ABI: list[dict[str, Any]] = [
    _fn(
        "depositForBurn",
        [
            _param("amount", "uint256"),
            _param("destinationDomain", "uint32"),
            _param("mintRecipient", "bytes32"),
            _param("burnToken", "address"),
        ],
        [_param("nonce", "uint64")],
    ),
]
