import re

# Base58 alphabet (no 0, O, I, l), full-length mint address on its own line
SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{44}$")


def extract_token_address(message: str) -> str | None:
    """Return the first line of message that is exactly a token address."""
    for line in message.splitlines():
        candidate = line.strip()
        if SOLANA_ADDRESS_RE.match(candidate):
            return candidate
    return None
