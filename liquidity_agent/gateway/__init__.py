from .base import LedgerGateway, MAX_UINT256, ZERO_ADDRESS, is_zero_address
from .paper_gateway import PaperLedgerGateway
from .web3_gateway import Web3LedgerGateway

__all__ = [
    "LedgerGateway",
    "PaperLedgerGateway",
    "Web3LedgerGateway",
    "MAX_UINT256",
    "ZERO_ADDRESS",
    "is_zero_address",
]
