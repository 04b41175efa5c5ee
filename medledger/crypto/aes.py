from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.backends import default_backend
import os
import base64
import hashlib
import json

from medledger.errors import PreconditionFailure

MIN_SECRET_LENGTH = 32
HKDF_INFO = b"medledger payload encryption"


def canonical_json(payload):
    """Serialize a payload the same way every time (sorted keys, no spaces)"""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode('utf-8')
    return json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str).encode('utf-8')


def hash_payload(payload):
    """One-way integrity digest (hex SHA-256), independent of the encryption key"""
    return hashlib.sha256(canonical_json(payload)).hexdigest()


def derive_key(secret):
    """Turn the configured secret into a 256-bit AES key

    A 64 character hex secret is used as is; any other secret of at
    least 32 characters is stretched with HKDF-SHA256.
    """
    if hasattr(secret, 'get_secret_value'):
        secret = secret.get_secret_value()
    if not secret or len(secret) < MIN_SECRET_LENGTH:
        raise PreconditionFailure(f"ENCRYPTION_KEY must be at least {MIN_SECRET_LENGTH} characters")

    if len(secret) == 64:
        try:
            return bytes.fromhex(secret)
        except ValueError:
            pass

    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=HKDF_INFO,
        backend=default_backend()
    ).derive(secret.encode('utf-8'))


class PayloadCipher:
    """Encrypts payloads before they leave the service boundary"""

    def __init__(self, secret):
        self._key = derive_key(secret)

    def encrypt(self, payload):
        """Encrypt data using AES-GCM with a fresh IV per call"""
        data = canonical_json(payload)

        # Generate a random IV
        iv = os.urandom(12)  # 96 bits for GCM

        encryptor = Cipher(
            algorithms.AES(self._key),
            modes.GCM(iv),
            backend=default_backend()
        ).encryptor()

        ciphertext = encryptor.update(data) + encryptor.finalize()

        result = {
            'iv': base64.b64encode(iv).decode('utf-8'),
            'ciphertext': base64.b64encode(ciphertext).decode('utf-8'),
            'tag': base64.b64encode(encryptor.tag).decode('utf-8')
        }

        return json.dumps(result, separators=(',', ':'))

    def decrypt(self, token):
        """Decrypt a token produced by encrypt; raises InvalidTag on tampering"""
        if isinstance(token, bytes):
            token = token.decode('utf-8')

        data = json.loads(token)
        iv = base64.b64decode(data['iv'])
        ciphertext = base64.b64decode(data['ciphertext'])
        tag = base64.b64decode(data['tag'])

        decryptor = Cipher(
            algorithms.AES(self._key),
            modes.GCM(iv, tag),
            backend=default_backend()
        ).decryptor()

        plaintext = decryptor.update(ciphertext) + decryptor.finalize()

        return plaintext.decode('utf-8')
