from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from mnemonic import Mnemonic


class WalletIdentity:
    """
    The reporter's authenticated identity.

    Mirrors what a wallet connection gives the app: whether it is connected,
    and the address it signs with.
    """

    def __init__(self, account: Optional[LocalAccount] = None):
        self.account = account

    @property
    def connected(self) -> bool:
        return self.account is not None

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None

    @classmethod
    def from_private_key(cls, private_key: str) -> "WalletIdentity":
        return cls(Account.from_key(private_key))

    @classmethod
    def from_mnemonic(cls, phrase: str) -> "WalletIdentity":
        # Same derivation the sensor agents use for their signing keys.
        seed_bytes = Mnemonic("english").to_seed(phrase)
        return cls(Account.from_key(seed_bytes[:32]))

    @classmethod
    def from_settings(cls, private_key: Optional[str], phrase: Optional[str]) -> "WalletIdentity":
        if private_key:
            return cls.from_private_key(private_key)
        if phrase:
            return cls.from_mnemonic(phrase)
        return cls()

    def __repr__(self):
        return f"WalletIdentity(connected={self.connected}, address={self.address})"
