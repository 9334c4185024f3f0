import binascii
from typing import Optional, Tuple

from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct
from eth_typing import ChecksumAddress
from hexbytes import HexBytes
from web3 import Web3

from src.core.logger.logger import logger


class SignatureVerificationService:
    """Recovers the signer of personal_sign messages and checks it against a claimed address"""

    @staticmethod
    def _to_checksum_address(address: str) -> ChecksumAddress:
        try:
            return Web3.to_checksum_address(address.strip().lower())
        except (ValueError, TypeError) as e:
            raise ValueError("Invalid Ethereum address format") from e

    @staticmethod
    def _create_message(message: str) -> SignableMessage:
        return encode_defunct(text=message)

    @staticmethod
    def _to_signature_bytes(signature: str) -> HexBytes:
        if isinstance(signature, str) and not signature.startswith("0x"):
            signature = "0x" + signature
        return HexBytes(signature)

    def recover_address(self, message: str, signature: str) -> ChecksumAddress:
        """Address that produced `signature` over `message`; raises ValueError"""
        try:
            signature_bytes = self._to_signature_bytes(signature)
        except (ValueError, TypeError, binascii.Error) as e:
            raise ValueError("Invalid signature format") from e

        try:
            return Account.recover_message(self._create_message(message), signature=signature_bytes)
        except Exception as e:
            # eth-keys reports bad lengths and out-of-range values with its own error types
            raise ValueError("Invalid signature format") from e

    def verify_signature(self, claimed_address: str, signature: str, message: str) -> Tuple[bool, Optional[str]]:
        """
        Verify a personal_sign signature

        Args:
            claimed_address: The address that claims to have signed the message
            signature: Hex-encoded signature
            message: The original message that was signed

        Returns:
            Tuple[bool, Optional[str]]: (is_valid, error_message)
        """
        try:
            checksum_address = self._to_checksum_address(claimed_address)
        except ValueError as e:
            logger.warning(str(e), extra={"address": claimed_address})
            return False, str(e)

        try:
            recovered_address = self.recover_address(message, signature)
        except ValueError as e:
            logger.warning(str(e), extra={"address": claimed_address})
            return False, str(e)

        if recovered_address.lower() != checksum_address.lower():
            error_msg = "Recovered address does not match claimed address"
            logger.warning(
                error_msg,
                extra={"address": claimed_address, "recovered_address": recovered_address}
            )
            return False, error_msg

        logger.debug("Signature verified", extra={"address": checksum_address})
        return True, None
