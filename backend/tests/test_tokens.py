"""Tests for token issuance, verification, revocation and key loading"""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from tokencart.config import Settings
from tokencart.errors import AuthError, AuthFailure, KeyUnavailableError
from tokencart.utils.jwt_utils import SigningKeys, TokenAuthority, load_signing_keys
from tokencart.utils.revocation import InMemoryRevocationList

SECRET = "test-secret-" + "k" * 40


@pytest.fixture(scope="module")
def rsa_keys() -> SigningKeys:
    return load_signing_keys(Settings(JWT_ALGORITHM="RS256", JWT_AUTO_GENERATE_KEY=True))


@pytest.fixture
def hs_authority(clock) -> TokenAuthority:
    keys = SigningKeys(algorithm="HS256", signing=SECRET, verifying=SECRET)
    return TokenAuthority(keys, InMemoryRevocationList(), default_ttl=3600, clock=clock)


@pytest.fixture
def rs_authority(rsa_keys, clock) -> TokenAuthority:
    return TokenAuthority(rsa_keys, InMemoryRevocationList(), default_ttl=3600, key_id="k1", clock=clock)


def _reason(authority: TokenAuthority, token) -> AuthFailure:
    with pytest.raises(AuthError) as exc_info:
        authority.verify(token)
    return exc_info.value.reason


def _swap(char: str) -> str:
    return "A" if char != "A" else "B"


# ---------------------------------------------------------------------------
# Issue / verify
# ---------------------------------------------------------------------------

def test_issue_then_verify(rs_authority: TokenAuthority, clock):
    issued = rs_authority.issue("u1", role="support")
    claims = rs_authority.verify(issued.token)

    assert claims.principal_id == "u1"
    assert claims.role == "support"
    assert claims.token_id == issued.token_id
    assert claims.issued_at == int(clock.now)
    assert claims.expires_at == claims.issued_at + 3600
    assert issued.expires_in == 3600


def test_default_role_applied(hs_authority: TokenAuthority):
    claims = hs_authority.verify(hs_authority.issue("u1").token)
    assert claims.role == "customer"


def test_token_ids_are_unique(hs_authority: TokenAuthority):
    ids = {hs_authority.issue("u1").token_id for _ in range(20)}
    assert len(ids) == 20


def test_kid_header_set(rs_authority: TokenAuthority):
    token = rs_authority.issue("u1").token
    assert jwt.get_unverified_header(token)["kid"] == "k1"


def test_non_positive_ttl_rejected(hs_authority: TokenAuthority):
    with pytest.raises(ValueError):
        hs_authority.issue("u1", ttl=0)


def test_es256_round_trip(clock):
    keys = load_signing_keys(Settings(JWT_ALGORITHM="ES256", JWT_AUTO_GENERATE_KEY=True))
    authority = TokenAuthority(keys, InMemoryRevocationList(), clock=clock)
    assert authority.verify(authority.issue("u1").token).principal_id == "u1"


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

def test_valid_until_just_before_expiry(hs_authority: TokenAuthority, clock):
    issued = hs_authority.issue("u1", ttl=60)
    clock.advance(59.999)
    assert hs_authority.verify(issued.token).principal_id == "u1"


def test_expired_at_exact_expiry(hs_authority: TokenAuthority, clock):
    issued = hs_authority.issue("u1", ttl=60)
    clock.advance(60)
    assert _reason(hs_authority, issued.token) == AuthFailure.EXPIRED


def test_expired_long_after(hs_authority: TokenAuthority, clock):
    issued = hs_authority.issue("u1", ttl=60)
    clock.advance(10_000)
    assert _reason(hs_authority, issued.token) == AuthFailure.EXPIRED


def test_iat_truncated_to_whole_seconds(hs_authority: TokenAuthority, clock):
    clock.now = 1_700_000_000.9
    issued = hs_authority.issue("u1", ttl=10)
    assert issued.issued_at == 1_700_000_000
    assert issued.expires_at == 1_700_000_010


# ---------------------------------------------------------------------------
# Tampering and garbage
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("authority_name", ["hs_authority", "rs_authority"])
def test_any_single_character_change_is_bad_signature(authority_name, request):
    authority: TokenAuthority = request.getfixturevalue(authority_name)
    token = authority.issue("u1").token

    for index, char in enumerate(token):
        if char == ".":
            continue
        tampered = token[:index] + _swap(char) + token[index + 1:]
        assert _reason(authority, tampered) == AuthFailure.BAD_SIGNATURE, f"position {index}"


def test_forged_expiry_is_bad_signature(hs_authority: TokenAuthority, clock):
    issued = hs_authority.issue("u1", ttl=60)
    claims = jwt.get_unverified_claims(issued.token)
    claims["exp"] += 86400
    forged = jwt.encode(claims, "a-different-secret", algorithm="HS256")
    assert _reason(hs_authority, forged) == AuthFailure.BAD_SIGNATURE


def test_signature_checked_before_expiry(hs_authority: TokenAuthority, clock):
    token = hs_authority.issue("u1", ttl=60).token
    clock.advance(3600)
    header, payload, signature = token.split(".")
    tampered = f"{header}.{payload}.{_swap(signature[0])}{signature[1:]}"
    assert _reason(hs_authority, tampered) == AuthFailure.BAD_SIGNATURE


def test_token_from_another_key_rejected(rs_authority: TokenAuthority, clock):
    other_keys = load_signing_keys(Settings(JWT_ALGORITHM="RS256", JWT_AUTO_GENERATE_KEY=True))
    other = TokenAuthority(other_keys, InMemoryRevocationList(), clock=clock)
    assert _reason(rs_authority, other.issue("u1").token) == AuthFailure.BAD_SIGNATURE


@pytest.mark.parametrize("garbage", ["", "abc", "a.b", "a..c", ".b.c", "a.b.c.d", "not a token at all", None, 42])
def test_garbage_is_malformed(hs_authority: TokenAuthority, garbage):
    assert _reason(hs_authority, garbage) == AuthFailure.MALFORMED


@pytest.mark.parametrize("garbage", ["a.b.c", "x.y.!!!", "eyJhbGciOiJIUzI1NiJ9.e30.AAAA"])
def test_unsigned_three_part_garbage_is_bad_signature(hs_authority: TokenAuthority, garbage):
    assert _reason(hs_authority, garbage) == AuthFailure.BAD_SIGNATURE


def test_correctly_signed_but_missing_claims_is_malformed(hs_authority: TokenAuthority):
    token = jwt.encode({"sub": "u1"}, SECRET, algorithm="HS256")
    assert _reason(hs_authority, token) == AuthFailure.MALFORMED


def test_correctly_signed_wrong_type_is_malformed(hs_authority: TokenAuthority, clock):
    token = jwt.encode(
        {"sub": "u1", "jti": "j1", "iat": int(clock.now), "exp": int(clock.now) + 60, "type": "refresh"},
        SECRET,
        algorithm="HS256",
    )
    assert _reason(hs_authority, token) == AuthFailure.MALFORMED


# ---------------------------------------------------------------------------
# Revocation and refresh
# ---------------------------------------------------------------------------

def test_revoke_then_verify(hs_authority: TokenAuthority):
    issued = hs_authority.issue("u1")
    assert hs_authority.revoke(issued.token) is True
    assert _reason(hs_authority, issued.token) == AuthFailure.REVOKED


def test_revoke_is_idempotent(hs_authority: TokenAuthority):
    issued = hs_authority.issue("u1")
    assert hs_authority.revoke(issued.token) is True
    assert hs_authority.revoke(issued.token) is True
    assert _reason(hs_authority, issued.token) == AuthFailure.REVOKED


def test_revoke_only_affects_that_token(hs_authority: TokenAuthority):
    first = hs_authority.issue("u1")
    second = hs_authority.issue("u1")
    hs_authority.revoke(first.token)
    assert hs_authority.verify(second.token).token_id == second.token_id


def test_revoking_expired_token_is_noop(hs_authority: TokenAuthority, clock):
    issued = hs_authority.issue("u1", ttl=60)
    clock.advance(120)
    assert hs_authority.revoke(issued.token) is False
    assert _reason(hs_authority, issued.token) == AuthFailure.EXPIRED


def test_revoke_rejects_foreign_token(hs_authority: TokenAuthority):
    forged = jwt.encode({"sub": "u1"}, "other-secret", algorithm="HS256")
    with pytest.raises(AuthError):
        hs_authority.revoke(forged)


def test_expired_wins_over_revoked(hs_authority: TokenAuthority, clock):
    issued = hs_authority.issue("u1", ttl=60)
    hs_authority.revoke(issued.token)
    clock.advance(60)
    assert _reason(hs_authority, issued.token) == AuthFailure.EXPIRED


def test_prune_drops_naturally_expired_revocations(clock):
    revocations = InMemoryRevocationList()
    keys = SigningKeys(algorithm="HS256", signing=SECRET, verifying=SECRET)
    authority = TokenAuthority(keys, revocations, clock=clock)

    short = authority.issue("u1", ttl=60)
    long = authority.issue("u1", ttl=7200)
    authority.revoke(short.token)
    authority.revoke(long.token)
    assert len(revocations) == 2

    clock.advance(61)
    assert authority.prune_revocations() == 1
    assert len(revocations) == 1
    assert _reason(authority, long.token) == AuthFailure.REVOKED


def test_refresh_issues_new_and_revokes_old(hs_authority: TokenAuthority):
    old = hs_authority.issue("u1", role="support")
    new = hs_authority.refresh(old.token)

    assert new.token_id != old.token_id
    claims = hs_authority.verify(new.token)
    assert claims.principal_id == "u1"
    assert claims.role == "support"
    assert _reason(hs_authority, old.token) == AuthFailure.REVOKED


def test_refresh_of_expired_token_fails(hs_authority: TokenAuthority, clock):
    old = hs_authority.issue("u1", ttl=60)
    clock.advance(60)
    with pytest.raises(AuthError) as exc_info:
        hs_authority.refresh(old.token)
    assert exc_info.value.reason == AuthFailure.EXPIRED


def test_refresh_twice_fails_second_time(hs_authority: TokenAuthority):
    old = hs_authority.issue("u1")
    hs_authority.refresh(old.token)
    with pytest.raises(AuthError) as exc_info:
        hs_authority.refresh(old.token)
    assert exc_info.value.reason == AuthFailure.REVOKED


def test_concurrent_refreshes_mint_one_token(hs_authority: TokenAuthority):
    old = hs_authority.issue("u1")
    workers = 8
    barrier = threading.Barrier(workers)

    def refresh(_):
        barrier.wait()
        try:
            return hs_authority.refresh(old.token)
        except AuthError as exc:
            return exc.reason

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(refresh, range(workers)))

    minted = [r for r in results if not isinstance(r, AuthFailure)]
    assert len(minted) == 1
    assert results.count(AuthFailure.REVOKED) == workers - 1
    assert hs_authority.verify(minted[0].token).principal_id == "u1"


def test_revocation_add_reports_first_claim():
    revocations = InMemoryRevocationList()
    assert revocations.add("jti-1", 100) is True
    assert revocations.add("jti-1", 100) is False
    assert revocations.contains("jti-1")


# ---------------------------------------------------------------------------
# Key loading and JWKS
# ---------------------------------------------------------------------------

def test_unparseable_key_unavailable():
    with pytest.raises(KeyUnavailableError):
        load_signing_keys(Settings(JWT_ALGORITHM="RS256", JWT_PRIVATE_KEY="not a pem"))


def test_missing_key_file_unavailable(tmp_path):
    with pytest.raises(KeyUnavailableError):
        load_signing_keys(Settings(JWT_ALGORITHM="RS256", JWT_PRIVATE_KEY_FILE=str(tmp_path / "missing.pem")))


def test_no_key_without_auto_generate_unavailable():
    with pytest.raises(KeyUnavailableError):
        load_signing_keys(Settings(JWT_ALGORITHM="RS256", JWT_AUTO_GENERATE_KEY=False))
    with pytest.raises(KeyUnavailableError):
        load_signing_keys(Settings(JWT_ALGORITHM="HS256", JWT_AUTO_GENERATE_KEY=False))


def test_key_type_must_match_algorithm():
    pem = rsa.generate_private_key(public_exponent=65537, key_size=2048).private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    with pytest.raises(KeyUnavailableError):
        load_signing_keys(Settings(JWT_ALGORITHM="ES256", JWT_PRIVATE_KEY=pem))


def test_key_loaded_from_file_is_stable(tmp_path, clock):
    pem = rsa.generate_private_key(public_exponent=65537, key_size=2048).private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    key_file = tmp_path / "signing.pem"
    key_file.write_bytes(pem)
    settings = Settings(JWT_ALGORITHM="RS256", JWT_PRIVATE_KEY_FILE=str(key_file))

    first = TokenAuthority(load_signing_keys(settings), InMemoryRevocationList(), clock=clock)
    second = TokenAuthority(load_signing_keys(settings), InMemoryRevocationList(), clock=clock)
    assert second.verify(first.issue("u1").token).principal_id == "u1"


def test_jwks_publishes_public_key(rs_authority: TokenAuthority):
    keys = rs_authority.jwks()["keys"]
    assert len(keys) == 1
    assert keys[0]["kty"] == "RSA"
    assert keys[0]["alg"] == "RS256"
    assert keys[0]["kid"] == "k1"
    assert keys[0]["use"] == "sig"
    assert "d" not in keys[0]


def test_jwks_empty_for_shared_secret(hs_authority: TokenAuthority):
    assert hs_authority.jwks() == {"keys": []}
