"""
Minimal ABIs for the ERC20, Aerodrome-style router/factory/voter/pool/gauge
contracts and Multicall3.
"""


def _param(name, type_, components=None):
    param = {"name": name, "type": type_}
    if components is not None:
        param["components"] = components
    return param


def _function(name, inputs, outputs, mutability="view"):
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs,
        "stateMutability": mutability,
    }


ROUTE_COMPONENTS = [
    _param("from", "address"),
    _param("to", "address"),
    _param("stable", "bool"),
    _param("factory", "address"),
]

ERC20_ABI = [
    _function("balanceOf", [_param("account", "address")], [_param("", "uint256")]),
    _function("decimals", [], [_param("", "uint8")]),
    _function("symbol", [], [_param("", "string")]),
    _function(
        "allowance",
        [_param("owner", "address"), _param("spender", "address")],
        [_param("", "uint256")],
    ),
    _function(
        "approve",
        [_param("spender", "address"), _param("amount", "uint256")],
        [_param("", "bool")],
        "nonpayable",
    ),
]

ROUTER_ABI = [
    _function(
        "getAmountsOut",
        [_param("amountIn", "uint256"), _param("routes", "tuple[]", ROUTE_COMPONENTS)],
        [_param("amounts", "uint256[]")],
    ),
    _function(
        "quoteRemoveLiquidity",
        [
            _param("tokenA", "address"),
            _param("tokenB", "address"),
            _param("stable", "bool"),
            _param("_factory", "address"),
            _param("liquidity", "uint256"),
        ],
        [_param("amountA", "uint256"), _param("amountB", "uint256")],
    ),
    _function(
        "swapExactTokensForTokens",
        [
            _param("amountIn", "uint256"),
            _param("amountOutMin", "uint256"),
            _param("routes", "tuple[]", ROUTE_COMPONENTS),
            _param("to", "address"),
            _param("deadline", "uint256"),
        ],
        [_param("amounts", "uint256[]")],
        "nonpayable",
    ),
    _function(
        "addLiquidity",
        [
            _param("tokenA", "address"),
            _param("tokenB", "address"),
            _param("stable", "bool"),
            _param("amountADesired", "uint256"),
            _param("amountBDesired", "uint256"),
            _param("amountAMin", "uint256"),
            _param("amountBMin", "uint256"),
            _param("to", "address"),
            _param("deadline", "uint256"),
        ],
        [
            _param("amountA", "uint256"),
            _param("amountB", "uint256"),
            _param("liquidity", "uint256"),
        ],
        "nonpayable",
    ),
    _function(
        "removeLiquidity",
        [
            _param("tokenA", "address"),
            _param("tokenB", "address"),
            _param("stable", "bool"),
            _param("liquidity", "uint256"),
            _param("amountAMin", "uint256"),
            _param("amountBMin", "uint256"),
            _param("to", "address"),
            _param("deadline", "uint256"),
        ],
        [_param("amountA", "uint256"), _param("amountB", "uint256")],
        "nonpayable",
    ),
]

FACTORY_ABI = [
    _function(
        "getPool",
        [_param("tokenA", "address"), _param("tokenB", "address"), _param("stable", "bool")],
        [_param("", "address")],
    ),
]

VOTER_ABI = [
    _function("gauges", [_param("pool", "address")], [_param("", "address")]),
]

POOL_ABI = [
    _function("token0", [], [_param("", "address")]),
    _function("token1", [], [_param("", "address")]),
    _function("stable", [], [_param("", "bool")]),
    _function("totalSupply", [], [_param("", "uint256")]),
    _function(
        "getReserves",
        [],
        [
            _param("_reserve0", "uint256"),
            _param("_reserve1", "uint256"),
            _param("_blockTimestampLast", "uint256"),
        ],
    ),
]

GAUGE_ABI = [
    _function("stakingToken", [], [_param("", "address")]),
    _function("balanceOf", [_param("account", "address")], [_param("", "uint256")]),
    _function("earned", [_param("account", "address")], [_param("", "uint256")]),
    _function("deposit", [_param("amount", "uint256")], [], "nonpayable"),
    _function("withdraw", [_param("amount", "uint256")], [], "nonpayable"),
    _function("getReward", [_param("account", "address")], [], "nonpayable"),
]

MULTICALL3_ABI = [
    _function(
        "tryAggregate",
        [
            _param("requireSuccess", "bool"),
            _param(
                "calls",
                "tuple[]",
                [_param("target", "address"), _param("callData", "bytes")],
            ),
        ],
        [
            _param(
                "returnData",
                "tuple[]",
                [_param("success", "bool"), _param("returnData", "bytes")],
            )
        ],
        "payable",
    ),
]
