"""
Wire codec for broadcast envelopes.

An envelope travels as a zlib stream wrapping one JSON object. Compression
and decompression run as streaming transforms and are always finalized
before bytes leave the codec, so a short stream is an error rather than a
silently truncated message.
"""

import logging
import zlib

from pydantic import ValidationError

from config import COMPRESSION_LEVEL, MAX_ENVELOPE_SIZE
from protocol.models import Envelope

logger = logging.getLogger(__name__)


class EncodeError(Exception):
    """An envelope could not be serialized or its compressed stream finalized."""


class DecodeError(Exception):
    """Inbound bytes could not be turned back into an envelope."""


class DecompressError(DecodeError):
    """The bytes are not a complete zlib stream."""


class EnvelopeFormatError(DecodeError):
    """The decompressed payload is not a valid envelope."""


def encode(envelope: Envelope) -> bytes:
    """Serialize and compress an envelope for broadcast."""
    try:
        raw = envelope.model_dump_json(by_alias=True).encode("utf-8")
    except ValueError as e:
        raise EncodeError(f"Failed to marshal {envelope.kind.name} envelope: {e}") from e

    compressor = zlib.compressobj(COMPRESSION_LEVEL)
    try:
        data = compressor.compress(raw)
        # The stream is incomplete until flushed with Z_FINISH
        data += compressor.flush(zlib.Z_FINISH)
    except zlib.error as e:
        raise EncodeError(f"Failed to finalize compressed envelope: {e}") from e

    return data


def decode(data: bytes) -> Envelope:
    """Decompress and parse bytes received from a broadcast."""
    decompressor = zlib.decompressobj()
    try:
        raw = decompressor.decompress(data, MAX_ENVELOPE_SIZE)
    except zlib.error as e:
        raise DecompressError(f"Failed to decompress message: {e}") from e

    if decompressor.unconsumed_tail or (not decompressor.eof and len(raw) >= MAX_ENVELOPE_SIZE):
        raise DecompressError(
            f"Failed to decompress message: envelope exceeds {MAX_ENVELOPE_SIZE} bytes"
        )
    if not decompressor.eof:
        raise DecompressError("Failed to decompress message: stream is truncated")
    if decompressor.unused_data:
        logger.debug(f"Ignoring {len(decompressor.unused_data)} trailing bytes after envelope")

    try:
        return Envelope.model_validate_json(raw)
    except ValidationError as e:
        raise EnvelopeFormatError(f"Failed to decode message: {e}") from e
