"""
Patient registry for tracking custodial wallets without querying the ledger.

Holds the non-secret half of a wallet record (name, birthdate, address);
the private key itself lives in the key vault.
"""

import os
import json
import time
import logging
import threading
from typing import Dict, List, Optional

from medledger.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class PatientRegistry:
    """JSON file mapping patient ids to their wallet profile"""

    def __init__(self, registry_file: str):
        self.registry_file = registry_file
        self._lock = threading.Lock()
        directory = os.path.dirname(registry_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def load_registry(self) -> Dict:
        """Load the registry from disk"""
        if os.path.exists(self.registry_file):
            with open(self.registry_file, 'r') as f:
                return json.load(f)
        return {"patients": {}, "metadata": {"last_updated": time.time()}}

    def save_registry(self, registry: Dict) -> None:
        """Save the registry to disk, replacing the previous file atomically"""
        registry["metadata"]["last_updated"] = time.time()

        tmp_file = f"{self.registry_file}.tmp"
        try:
            with open(tmp_file, 'w') as f:
                json.dump(registry, f, indent=2)
            os.replace(tmp_file, self.registry_file)
        except OSError as e:
            raise PersistenceFailure(f"Could not save patient registry: {e}")

    def register_patient(self, patient_id: int, wallet_address: str, name: Optional[str] = None,
                         birthdate: Optional[str] = None, ledger_account_id: Optional[str] = None) -> Dict:
        """
        Register a patient's wallet profile

        Args:
            patient_id: Ledger-assigned patient id
            wallet_address: Address of the custodial wallet
            name: Patient name, if known
            birthdate: Patient birthdate, if known
            ledger_account_id: Ledger account id (defaults to the wallet address)

        Returns:
            The stored profile

        Raises:
            PersistenceFailure: If the patient is already registered
        """
        profile = {
            "patient_id": int(patient_id),
            "name": name,
            "birthdate": birthdate,
            "wallet_address": wallet_address,
            "ledger_account_id": ledger_account_id or wallet_address,
            "registered_at": time.time(),
        }

        with self._lock:
            registry = self.load_registry()
            key = str(patient_id)
            if key in registry["patients"]:
                raise PersistenceFailure(f"Patient {patient_id} is already registered locally")
            registry["patients"][key] = profile
            self.save_registry(registry)

        logger.info(f"Registered patient {patient_id} in local registry")
        return profile

    def get_patient(self, patient_id: int) -> Optional[Dict]:
        """
        Get the wallet profile of a patient

        Returns:
            The profile, or None if the patient is not in the registry
        """
        return self.load_registry()["patients"].get(str(patient_id))

    def get_all_patient_ids(self) -> List[int]:
        return [int(k) for k in self.load_registry()["patients"].keys()]

    def patient_exists(self, patient_id: int) -> bool:
        return str(patient_id) in self.load_registry()["patients"]
