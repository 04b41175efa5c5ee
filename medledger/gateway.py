"""
Ledger execution gateway.

Owns the single connection to the ledger network. State-changing calls
are built, signed, sent and then awaited until the terminal receipt;
read-only calls go through ``eth_call``. Every outcome is normalized
into a result dict, nothing is raised after construction.
"""

import os
import json
import logging
import threading

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD

from medledger.constants import DEFAULT_GAS_LIMIT, ERRORS, VALUE_TRANSFER_GAS
from medledger.errors import ErrorKind, LedgerRejection, LedgerTimeout, MedledgerError, PreconditionFailure
from medledger.results import failure_result, success_result

logger = logging.getLogger(__name__)

ABI_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "abi")

# Revert reasons that mean the queried entity does not exist
NOT_FOUND_MARKERS = ("not found", "does not exist", "nonexistent", "unknown patient", "unknown record")


def load_abi(name):
    """Load a contract ABI shipped with the package

    Args:
        name: Contract name, e.g. "PatientIdentity"

    Returns:
        list: The ABI
    """
    abi_path = os.path.join(ABI_DIR, f"{name}.json")
    with open(abi_path, "r") as f:
        return json.load(f)


class LedgerGateway:
    """Sole component talking to the ledger network"""

    def __init__(self, rpc_url, operator_private_key, contracts, query_timeout=5.0,
                 transaction_timeout=120.0, poll_latency=0.5):
        """
        Args:
            rpc_url: JSON-RPC endpoint of the ledger network
            operator_private_key: Key of the operator account paying for transactions
            contracts: Mapping of contract address -> ABI
            query_timeout: Seconds allowed for each JSON-RPC request
            transaction_timeout: Seconds allowed for a receipt to arrive
            poll_latency: Seconds between receipt polls

        Raises:
            PreconditionFailure: If the endpoint or the operator credentials are missing
        """
        if hasattr(operator_private_key, "get_secret_value"):
            operator_private_key = operator_private_key.get_secret_value()
        if not rpc_url:
            raise PreconditionFailure("LEDGER_RPC_URL must be configured")
        if not operator_private_key:
            raise PreconditionFailure("OPERATOR_PRIVATE_KEY must be configured")

        try:
            self.operator = Account.from_key(operator_private_key)
        except Exception as e:
            # The key itself must never reach the logs
            raise PreconditionFailure(f"OPERATOR_PRIVATE_KEY is not a valid private key ({type(e).__name__})")

        self.contracts = {}
        for address, abi in contracts.items():
            if not Web3.is_address(address):
                raise PreconditionFailure(f"Invalid contract address: {address}")
            self.contracts[Web3.to_checksum_address(address)] = abi

        self.query_timeout = query_timeout
        self.transaction_timeout = transaction_timeout
        self.poll_latency = poll_latency

        self._session = requests.Session()
        self.w3 = Web3(Web3.HTTPProvider(
            rpc_url,
            request_kwargs={"timeout": query_timeout},
            session=self._session,
            exception_retry_configuration=None,
        ))

        self._contract_cache = {}
        self._chain_id = None
        self._send_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False

        logger.info(f"Ledger gateway ready for {rpc_url} with operator {self.operator.address}")

    @classmethod
    def from_settings(cls, settings):
        """Build the gateway from Settings, loading the ABI of each configured contract"""
        contracts = {}
        for name, address in (
            ("PatientIdentity", settings.patient_identity_contract),
            ("AccessControl", settings.access_control_contract),
            ("MedicalRecords", settings.medical_records_contract),
        ):
            if address:
                contracts[address] = load_abi(name)
            else:
                logger.warning(f"No contract address configured for {name}")

        return cls(
            settings.rpc_url,
            settings.operator_private_key,
            contracts,
            query_timeout=settings.query_timeout,
            transaction_timeout=settings.transaction_timeout,
        )

    @property
    def closed(self):
        return self._closed

    def execute(self, contract_ref, function, params=None, gas_limit=DEFAULT_GAS_LIMIT, signer=None):
        """
        Submit a state-changing contract call and wait for its receipt.

        Args:
            contract_ref: Address of the deployed contract
            function: Contract function name
            params: Positional arguments of the function
            gas_limit: Gas limit of the transaction
            signer: Private key to sign with instead of the operator key

        Returns:
            dict: {success, transaction_id, status, block_number, events} or a failure
        """
        try:
            self._ensure_open()
            contract = self._contract(contract_ref)
            account = self.operator if signer is None else Account.from_key(signer)
            call = getattr(contract.functions, function)(*(params or []))

            tx_hash = self._sign_and_send(
                account,
                lambda fields: call.build_transaction(dict(fields, gas=gas_limit)),
            )
            transaction_id = Web3.to_hex(tx_hash)
            receipt = self._await_receipt(tx_hash, transaction_id)

            events = self._decode_events(contract, contract_ref, receipt)
            logger.info(f"{function} confirmed in block {receipt.get('blockNumber')}: {transaction_id}")
            return success_result(
                transaction_id=transaction_id,
                status="SUCCESS",
                block_number=receipt.get("blockNumber"),
                events=events,
            )
        except Exception as e:
            return self._failure(e, function)

    def query(self, contract_ref, function, params=None):
        """
        Run a read-only contract call.

        Returns:
            dict: {success, result} or a failure
        """
        try:
            self._ensure_open()
            contract = self._contract(contract_ref)
            result = getattr(contract.functions, function)(*(params or [])).call({"from": self.operator.address})
            return success_result(result=result)
        except Exception as e:
            return self._failure(e, function)

    def fund_account(self, address, amount_wei):
        """
        Transfer native currency from the operator to an account.

        Returns:
            dict: {success, transaction_id, status} or a failure
        """
        try:
            self._ensure_open()
            to_address = Web3.to_checksum_address(address)
            tx_hash = self._sign_and_send(
                self.operator,
                lambda fields: dict(fields, to=to_address, value=int(amount_wei), gas=VALUE_TRANSFER_GAS),
            )
            transaction_id = Web3.to_hex(tx_hash)
            self._await_receipt(tx_hash, transaction_id)
            logger.info(f"Funded {to_address} with {amount_wei} wei: {transaction_id}")
            return success_result(transaction_id=transaction_id, status="SUCCESS")
        except Exception as e:
            return self._failure(e, "fund account")

    def is_connected(self):
        if self._closed:
            return False
        try:
            return self.w3.is_connected()
        except Exception as e:
            logger.warning(f"Ledger connectivity check failed: {e}")
            return False

    def close(self):
        """Close the ledger session; later calls are no-ops"""
        with self._close_lock:
            if self._closed:
                return
            self._session.close()
            self._closed = True
            logger.info("Ledger gateway closed")

    def _ensure_open(self):
        if self._closed:
            raise PreconditionFailure("Ledger gateway is closed")

    def _contract(self, contract_ref):
        if not contract_ref:
            raise PreconditionFailure(ERRORS["MISSING_CONTRACT"])
        if not Web3.is_address(contract_ref):
            raise LedgerRejection(f"Invalid contract address: {contract_ref}")

        address = Web3.to_checksum_address(contract_ref)
        if address not in self.contracts:
            raise PreconditionFailure(f"No ABI registered for contract {address}")

        if address not in self._contract_cache:
            self._contract_cache[address] = self.w3.eth.contract(address=address, abi=self.contracts[address])
        return self._contract_cache[address]

    def _sign_and_send(self, account, build):
        """Fill nonce/fee/chain fields, sign and broadcast; one sender at a time"""
        with self._send_lock:
            if self._chain_id is None:
                self._chain_id = self.w3.eth.chain_id
            fields = {
                "from": account.address,
                "nonce": self.w3.eth.get_transaction_count(account.address, "pending"),
                "gasPrice": self.w3.eth.gas_price,
                "chainId": self._chain_id,
            }
            tx = build(fields)
            signed_tx = self.w3.eth.account.sign_transaction(tx, account.key)
            return self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)

    def _await_receipt(self, tx_hash, transaction_id):
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.transaction_timeout,
                poll_latency=self.poll_latency,
            )
        except TimeExhausted as e:
            # The transaction may still be mined later
            raise LedgerTimeout(str(e), transaction_id=transaction_id)
        if receipt["status"] != 1:
            raise LedgerRejection(ERRORS["TRANSACTION_REVERTED"], transaction_id=transaction_id)
        return receipt

    def _decode_events(self, contract, contract_ref, receipt):
        events = []
        for entry in self.contracts[Web3.to_checksum_address(contract_ref)]:
            if entry.get("type") != "event":
                continue
            for log in getattr(contract.events, entry["name"])().process_receipt(receipt, errors=DISCARD):
                events.append({"event": log["event"], "args": dict(log["args"])})
        return events

    def _failure(self, error, label):
        details = {}
        if isinstance(error, MedledgerError):
            kind = error.kind
            details = error.details
        elif isinstance(error, ContractLogicError):
            message = str(error).lower()
            if any(marker in message for marker in NOT_FOUND_MARKERS):
                kind = ErrorKind.NOT_FOUND
            else:
                kind = ErrorKind.LEDGER_REJECTION
        elif isinstance(error, (TimeExhausted, requests.exceptions.Timeout, TimeoutError)):
            kind = ErrorKind.TIMEOUT
        else:
            kind = ErrorKind.LEDGER_REJECTION

        logger.error(f"Ledger call {label} failed ({kind.value}): {error}")
        return failure_result(error, kind, **details)
