"""BIP-39 seed phrase generation and validation.

Entropy comes from the OS CSPRNG on every call; the word list and checksum
handling are delegated to bip_utils.
"""

import logging
import secrets

from bip_utils import (
    Bip39Languages,
    Bip39MnemonicGenerator,
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
)

from gamewallet.errors import InputError

logger = logging.getLogger(__name__)

# Word count -> entropy bytes
ENTROPY_BYTES = {
    12: 16,
    24: 32,
}

# Every length BIP-39 defines; accepted on import even though we only generate 12/24
VALID_WORD_COUNTS = (12, 15, 18, 21, 24)

SEED_LENGTH = 64


def normalize(phrase: str) -> str:
    """Lowercase and collapse whitespace so pasted phrases compare equal."""
    return " ".join(phrase.strip().lower().split())


def generate(word_count: int = 12) -> str:
    """Generate a new seed phrase.

    Args:
        word_count: 12 (128-bit) or 24 (256-bit)

    Returns:
        Space separated English mnemonic

    Raises:
        InputError: If word_count is not supported
    """
    if word_count not in ENTROPY_BYTES:
        raise InputError(f"Unsupported word count {word_count}, use 12 or 24")

    entropy = secrets.token_bytes(ENTROPY_BYTES[word_count])
    mnemonic = Bip39MnemonicGenerator(Bip39Languages.ENGLISH).FromEntropy(entropy)
    logger.debug(f"Generated {word_count}-word mnemonic")
    return mnemonic.ToStr()


def validate(phrase) -> bool:
    """Check word count, word list membership and checksum.

    Never raises; malformed input simply returns False.
    """
    if not isinstance(phrase, str):
        return False

    words = normalize(phrase)
    if len(words.split(" ")) not in VALID_WORD_COUNTS:
        return False

    try:
        return Bip39MnemonicValidator(Bip39Languages.ENGLISH).IsValid(words)
    except (ValueError, TypeError):
        return False


def to_seed_bytes(phrase: str, passphrase: str = "") -> bytes:
    """Stretch a mnemonic into the 64-byte BIP-39 seed.

    Raises:
        InputError: If the phrase does not validate
    """
    if not validate(phrase):
        raise InputError("Invalid seed phrase")

    seed = Bip39SeedGenerator(normalize(phrase), Bip39Languages.ENGLISH).Generate(passphrase)
    return bytes(seed)
