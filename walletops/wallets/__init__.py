from walletops.wallets.service import TokenBalance, WalletBalance, WalletService

__all__ = [
    "TokenBalance",
    "WalletBalance",
    "WalletService",
]
