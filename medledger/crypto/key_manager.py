"""
Key vault for custodial patient wallets.

Private keys live in their own directory as encrypted Web3 Secret
Storage keystore files, one per patient, apart from the patient profile
registry. Only the identity manager reads them, to sign on the
patient's behalf.
"""

import os
import json
import logging

from eth_account import Account
from web3 import Web3

from medledger.errors import PersistenceFailure, PreconditionFailure

logger = logging.getLogger(__name__)

KEYSTORE_KDF = "pbkdf2"


class KeyVault:
    """Encrypted storage of custodial private keys keyed by patient id"""

    def __init__(self, directory, passphrase, iterations=262144):
        """
        Args:
            directory: Directory holding the keystore files
            passphrase: Passphrase protecting every keystore (str or SecretStr)
            iterations: PBKDF2 iterations used when encrypting new keys
        """
        if hasattr(passphrase, "get_secret_value"):
            passphrase = passphrase.get_secret_value()
        if not passphrase:
            raise PreconditionFailure("KEYSTORE_PASSPHRASE must be configured")

        self.directory = directory
        self._passphrase = passphrase
        self.iterations = iterations
        os.makedirs(self.directory, mode=0o700, exist_ok=True)

    def _key_file(self, patient_id):
        return os.path.join(self.directory, f"patient_{int(patient_id)}.json")

    def has_key(self, patient_id):
        return os.path.exists(self._key_file(patient_id))

    def store_key(self, patient_id, private_key):
        """Encrypt and save the private key of a patient's wallet

        Args:
            patient_id: Ledger-assigned patient id
            private_key: Hex private key

        Returns:
            str: Address of the stored key

        Raises:
            PersistenceFailure: If the patient already has a key or the write fails
        """
        key_file = self._key_file(patient_id)
        if os.path.exists(key_file):
            raise PersistenceFailure(f"A wallet already exists for patient {patient_id}")

        keystore = Account.encrypt(private_key, self._passphrase, kdf=KEYSTORE_KDF, iterations=self.iterations)

        try:
            fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(keystore, f)
        except OSError as e:
            raise PersistenceFailure(f"Could not write keystore for patient {patient_id}: {e}")

        address = Account.from_key(private_key).address
        logger.info(f"Stored custodial key for patient {patient_id} ({address})")
        return address

    def load_key(self, patient_id):
        """Decrypt the private key of a patient's wallet

        Returns:
            str: 0x-prefixed hex private key, or None if the patient has no key
        """
        key_file = self._key_file(patient_id)
        if not os.path.exists(key_file):
            return None

        with open(key_file, "r") as f:
            keystore = json.load(f)

        return Web3.to_hex(Account.decrypt(keystore, self._passphrase))
