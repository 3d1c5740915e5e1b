from __future__ import annotations

from conftest import make_settings, secret_of
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from walletops.core.keys import KeyDecodeError, decode_keypair, decode_pubkey


def expect_decode_error(fn, *args) -> None:
    try:
        fn(*args)
    except KeyDecodeError:
        pass
    else:
        raise AssertionError(f"expected KeyDecodeError for {args!r}")


def test_decode_keypair_round_trips_solders_secret() -> None:
    keypair = Keypair()
    assert decode_keypair(secret_of(keypair)).pubkey() == keypair.pubkey()
    assert decode_keypair(f"  {secret_of(keypair)}\n").pubkey() == keypair.pubkey()


def test_decode_keypair_rejects_bad_material() -> None:
    expect_decode_error(decode_keypair, "")
    expect_decode_error(decode_keypair, "0OIl")
    expect_decode_error(decode_keypair, str(Pubkey.new_unique()))


def test_decode_keypair_rejects_wrong_length_keys() -> None:
    secret = secret_of(Keypair())
    expect_decode_error(decode_keypair, secret[:40])
    expect_decode_error(decode_keypair, secret + secret)
    expect_decode_error(decode_keypair, secret[:-1] + "0")


def test_decode_pubkey_labels_errors() -> None:
    address = Pubkey.new_unique()
    assert decode_pubkey(str(address)) == address
    try:
        decode_pubkey("nope", label="refund destination")
    except KeyDecodeError as exc:
        assert "refund destination" in str(exc)
    else:
        raise AssertionError("expected KeyDecodeError")


def test_settings_normalize_and_validate() -> None:
    settings = make_settings(commitment=" Finalized ", log_level="debug")
    assert settings.commitment == "finalized"
    assert settings.log_level == "DEBUG"
    assert settings.refund_chunk_size == 1
    assert settings.close_chunk_size == 5
    assert settings.transfer_chunk_size == 10

    for overrides in (
        {"commitment": "eventually"},
        {"rpc_url": "ftp://example.invalid"},
        {"poll_timeout_ms": 5, "poll_interval_ms": 10},
    ):
        try:
            make_settings(**overrides)
        except ValueError:
            pass
        else:
            raise AssertionError(f"expected ValueError for {overrides}")
