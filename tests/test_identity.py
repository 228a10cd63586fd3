"""Tests for signed-message identity verification."""
import pytest
from eth_account import Account

from presence.errors import InvalidSignature
from presence.services.identity import (
    IdentityVerifier,
    canonical_message,
    is_identity_handle,
    normalize_identity,
)

TOKEN = "tok_abc123"


@pytest.fixture
def verifier():
    return IdentityVerifier()


def test_canonical_message_embeds_token():
    message = canonical_message(TOKEN)
    assert TOKEN in message
    assert message == canonical_message(TOKEN)
    assert message != canonical_message("another-token")


def test_identity_handles():
    account = Account.create()
    assert is_identity_handle(account.address)
    assert is_identity_handle(account.address.lower())
    assert not is_identity_handle("0x1234")
    assert not is_identity_handle("not-an-address")
    assert not is_identity_handle(None)
    assert normalize_identity(account.address) == account.address.lower()


class TestVerify:
    """IdentityVerifier.verify"""

    def test_valid_signature(self, verifier, attendee, sign):
        signature = sign(attendee, TOKEN)
        assert verifier.verify(canonical_message(TOKEN), signature, attendee.address) is True

    def test_identity_comparison_ignores_case(self, verifier, attendee, sign):
        signature = sign(attendee, TOKEN)
        assert verifier.verify(canonical_message(TOKEN), signature, attendee.address.lower())

    def test_signature_without_prefix(self, verifier, attendee, sign):
        signature = sign(attendee, TOKEN)
        assert verifier.verify(canonical_message(TOKEN), signature[2:], attendee.address)

    def test_other_signer_rejected(self, verifier, attendee, sign):
        intruder = Account.create()
        signature = sign(intruder, TOKEN)
        with pytest.raises(InvalidSignature):
            verifier.verify(canonical_message(TOKEN), signature, attendee.address)

    def test_signature_for_other_token_rejected(self, verifier, attendee, sign):
        signature = sign(attendee, "different-token")
        with pytest.raises(InvalidSignature):
            verifier.verify(canonical_message(TOKEN), signature, attendee.address)

    @pytest.mark.parametrize("signature", ["0x", "0xdeadbeef", "garbage", "0x" + "00" * 65])
    def test_malformed_signature_rejected(self, verifier, attendee, signature):
        with pytest.raises(InvalidSignature):
            verifier.verify(canonical_message(TOKEN), signature, attendee.address)

    def test_invalid_claimed_identity_rejected(self, verifier, attendee, sign):
        signature = sign(attendee, TOKEN)
        with pytest.raises(InvalidSignature):
            verifier.verify(canonical_message(TOKEN), signature, "alice")
