"""
Wallet bridge API router - delegates to the wallet controller.
"""

from src.api.controller.wallet.wallet_controller import router as wallet_controller_router

router = wallet_controller_router

__all__ = ['router']
