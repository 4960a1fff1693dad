"""
Sealed-box encryption for GitHub Actions secrets.
"""

from base64 import b64encode

from nacl import encoding, public
from nacl.exceptions import CryptoError

from sources.exceptions import SecretException


def seal(public_key: str, plaintext: str) -> str:
    """
    Encrypt ``plaintext`` for the holder of a base64 encoded public key.

    :param public_key: Repository public key, base64 encoded.
    :param plaintext: Secret value.
    :return: Base64 encoded ciphertext.
    :raises SecretException: If the key cannot be decoded or used.
    """
    try:
        key = public.PublicKey(public_key.encode("utf-8"), encoding.Base64Encoder())
    except (CryptoError, ValueError, TypeError) as e:
        raise SecretException("unable to decode repository public key") from e

    sealed_box = public.SealedBox(key)
    encrypted = sealed_box.encrypt(plaintext.encode("utf-8"))
    return b64encode(encrypted).decode("utf-8")
