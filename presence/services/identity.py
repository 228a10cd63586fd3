"""
Signed-message identity verification.

Attendees prove control of an identity (an EVM address) by signing the
canonical claim message with EIP-191 `personal_sign`. The message embeds
the claim token so a signature cannot be replayed for another event or
another kind of action.
"""
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_hex_address
import structlog

from ..errors import InvalidSignature

log = structlog.get_logger()

CLAIM_MESSAGE_TEMPLATE = (
    "Proof of Presence badge claim\n"
    "\n"
    "I am claiming the badge for claim token: {claim_token}"
)


def canonical_message(claim_token: str) -> str:
    """The exact text an attendee must sign to claim against `claim_token`."""
    return CLAIM_MESSAGE_TEMPLATE.format(claim_token=claim_token)


def is_identity_handle(value: object) -> bool:
    """True for a 20-byte hex address, in any letter case."""
    return isinstance(value, str) and is_hex_address(value)


def normalize_identity(value: str) -> str:
    """Identity handles are case-insensitive; lower-case is the stored form."""
    return value.lower()


class IdentityVerifier:
    """
    Verifies that an identity signed a message.

    Recovery failures and mismatches both raise InvalidSignature; callers
    must treat that as a terminal security rejection.
    """

    def verify(self, message: str, signature: str, claimed_identity: str) -> bool:
        """
        Verify `signature` over `message` was produced by `claimed_identity`.

        Args:
            message: Canonical message text (see canonical_message)
            signature: 65-byte hex signature, with or without 0x prefix
            claimed_identity: Identity handle the caller asserts

        Returns:
            True when the recovered signer matches

        Raises:
            InvalidSignature: If recovery fails or the signer differs
        """
        if not is_identity_handle(claimed_identity):
            raise InvalidSignature("Claimed identity is not a valid identity handle")

        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as e:
            log.info("identity.recovery_failed", error_type=type(e).__name__)
            raise InvalidSignature("Signature could not be recovered") from e

        if normalize_identity(recovered) != normalize_identity(claimed_identity):
            log.info(
                "identity.mismatch",
                claimed=normalize_identity(claimed_identity),
                recovered=normalize_identity(recovered),
            )
            raise InvalidSignature("Signature was not produced by the claimed identity")

        return True
