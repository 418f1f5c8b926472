from datetime import timedelta

from finance_api.auth.revocation_list import TokenRevocationList


def test_revoked_token_is_remembered_until_expiry(clock) -> None:
    revocations = TokenRevocationList(clock)
    revocations.revoke("jti-1", clock.now() + timedelta(minutes=5))

    assert revocations.is_revoked("jti-1") is True
    assert revocations.is_revoked("jti-2") is False

    clock.advance(minutes=5)
    assert revocations.is_revoked("jti-1") is False
    assert len(revocations) == 0


def test_len_prunes_expired_entries(clock) -> None:
    revocations = TokenRevocationList(clock)
    revocations.revoke("short", clock.now() + timedelta(seconds=10))
    revocations.revoke("long", clock.now() + timedelta(minutes=10))

    clock.advance(seconds=11)

    assert len(revocations) == 1
