"""
benchgo - Block framing for message payloads.

Turns arbitrary-length plaintext into a whole number of cipher blocks and
back. Each 8-byte block is enciphered on its own, in order, and the
ciphertext blocks are laid out contiguously.

Padding is always 1..8 zero bytes: a plaintext that is already a multiple
of the block size still gets a full block of zeros. Raw block decryption
leaves that padding in place, which is ambiguous for plaintexts ending in
zero bytes. Message payloads therefore wrap the UTF-8 text in a msgpack
string before padding; the length prefix lets the receiver drop the padding
exactly.
"""

import logging

import msgpack

from .constants import CIPHER_BLOCK_SIZE
from .crypto import SessionCipher
from .errors import ErrorCode, ProtocolViolation

logger = logging.getLogger(__name__)


def padding_length(length: int, block_size: int = CIPHER_BLOCK_SIZE) -> int:
    """Number of padding bytes for ``length`` bytes of data, always 1..block_size."""
    return block_size - (length % block_size)


def pad(data: bytes, block_size: int = CIPHER_BLOCK_SIZE) -> bytes:
    """Append zero bytes up to the next block boundary."""
    return data + b"\x00" * padding_length(len(data), block_size)


def _process_blocks(context, data: bytes, block_size: int) -> bytes:
    out = bytearray()
    for offset in range(0, len(data), block_size):
        out += context.update(data[offset : offset + block_size])
    out += context.finalize()
    return bytes(out)


def encrypt_blocks(data: bytes, cipher: SessionCipher) -> bytes:
    """
    Pad ``data`` and encipher it block by block.

    Returns:
        Ciphertext of length ``len(data) + padding_length(len(data))``
    """
    padded = pad(data, cipher.block_size)
    return _process_blocks(cipher.encryptor(), padded, cipher.block_size)


def decrypt_blocks(data: bytes, cipher: SessionCipher) -> bytes:
    """
    Decipher ``data`` block by block.

    The result is exactly as long as the input; padding is not removed.

    Raises:
        ProtocolViolation: If ``data`` is not a whole number of blocks
    """
    if len(data) % cipher.block_size != 0:
        raise ProtocolViolation(
            ErrorCode.E306_INVALID_CIPHERTEXT,
            f"Ciphertext length {len(data)} is not a multiple of {cipher.block_size}",
            {"length": len(data)},
        )
    return _process_blocks(cipher.decryptor(), data, cipher.block_size)


def encrypt_message(plaintext: str, cipher: SessionCipher) -> bytes:
    """Frame a text message and encrypt it."""
    framed = msgpack.packb(plaintext, use_bin_type=True)
    return encrypt_blocks(framed, cipher)


def decrypt_message(ciphertext: bytes, cipher: SessionCipher) -> str:
    """
    Decrypt a payload produced by :func:`encrypt_message`.

    Raises:
        ProtocolViolation: If the payload does not decrypt to one framed
            string followed only by zero padding
    """
    if not ciphertext:
        raise ProtocolViolation(ErrorCode.E306_INVALID_CIPHERTEXT, "Empty ciphertext")

    framed = decrypt_blocks(ciphertext, cipher)

    unpacker = msgpack.Unpacker(raw=False)
    unpacker.feed(framed)
    try:
        plaintext = unpacker.unpack()
    except (msgpack.exceptions.UnpackException, ValueError) as e:
        # Also covers a frame cut short by the end of the buffer
        raise ProtocolViolation(
            ErrorCode.E306_INVALID_CIPHERTEXT,
            f"Decrypted payload is not a framed message: {e}",
        ) from e

    if not isinstance(plaintext, str):
        raise ProtocolViolation(
            ErrorCode.E306_INVALID_CIPHERTEXT,
            f"Decrypted payload holds {type(plaintext).__name__}, expected text",
        )

    trailer = framed[unpacker.tell():]
    if not 1 <= len(trailer) <= cipher.block_size or trailer.strip(b"\x00"):
        raise ProtocolViolation(
            ErrorCode.E306_INVALID_CIPHERTEXT,
            "Decrypted payload has invalid padding",
            {"trailer_length": len(trailer)},
        )
    return plaintext
