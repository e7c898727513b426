"""
Player login for QuestForge.

Names are unique; the first login with a new name registers that player.
PINs are stored only as bcrypt hashes.
"""

import logging

import bcrypt

logger = logging.getLogger(__name__)

PIN_ENCODING = "utf-8"


def hash_pin(pin: str) -> str:
    """
    Salt and hash a player's PIN for storage.

    Example:
        >>> stored = hash_pin("4321")
        >>> stored.startswith("$2")
        True
    """
    return bcrypt.hashpw(pin.encode(PIN_ENCODING), bcrypt.gensalt()).decode(PIN_ENCODING)


def verify_pin(pin: str, pin_hash: str) -> bool:
    """
    Check a login PIN against the stored hash.

    A missing or malformed stored hash never matches.
    """
    # Empty PIN_Hash cell
    if not pin_hash:
        return False
    try:
        return bcrypt.checkpw(pin.encode(PIN_ENCODING), pin_hash.encode(PIN_ENCODING))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def authenticate_player(player_name: str, pin: str, sheets_client):
    """
    Log a player in, registering them on first use of the name.

    New players are created at full HP and energy with the PIN's hash.
    Existing players must present the matching PIN.

    Args:
        player_name: Unique player name
        pin: PIN as typed in the login form
        sheets_client: Players worksheet

    Returns:
        The Player, or None when the PIN does not match

    Raises:
        PersistenceError: If the players worksheet cannot be read or written
        RateLimitError: If rate limit is exceeded after retries
    """
    # Resolved at call time so the storage functions can be swapped in tests
    from questforge.database import create_player, get_player

    # First login with a new name registers the player
    player = get_player(player_name, sheets_client)
    if player is None:
        logger.info(f"Registering new player {player_name}")
        return create_player(player_name, hash_pin(pin), sheets_client)

    # Existing player: verify PIN against the stored hash
    if not verify_pin(pin, player.pin_hash):
        logger.info(f"Rejected login for player {player_name}")
        return None
    return player
