import pytest

from openreader.workflows.errors import ConfigError, TokenError
from openreader.workflows.resolver_config import ResolverConfig
from openreader.workflows.tokens import ReaderTokenSigner


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_token_round_trip():
    signer = ReaderTokenSigner("s3cret", ttl_seconds=60)
    token = signer.build({"provider": "oapen", "provider_id": "abc", "direct_url": "https://library.oapen.org/x.pdf"})
    payload = signer.verify(token)
    assert payload is not None
    assert payload["direct_url"] == "https://library.oapen.org/x.pdf"
    assert payload["exp"] - payload["iat"] == 60
    assert "=" not in token


def test_token_expires():
    clock = FakeClock()
    signer = ReaderTokenSigner("s3cret", ttl_seconds=10, clock=clock)
    token = signer.build({"direct_url": "https://www.gutenberg.org/ebooks/1.epub3.images"})
    assert signer.verify(token) is not None
    clock.now += 11
    payload, reason = signer.verify_detailed(token)
    assert payload is None
    assert reason == "token_expired"


def test_tampered_or_foreign_tokens_are_rejected():
    signer = ReaderTokenSigner("s3cret")
    token = signer.build({"direct_url": "https://archive.org/download/a/a.epub"})
    body, sig = token.split(".")
    assert signer.verify_detailed(body + "x." + sig) == (None, "invalid_token")
    assert signer.verify_detailed("no-separator") == (None, "invalid_token")
    assert signer.verify_detailed("") == (None, "invalid_token")
    assert ReaderTokenSigner("other").verify(token) is None


def test_gutenberg_direct_url_is_derived():
    signer = ReaderTokenSigner("s3cret")
    payload = signer.verify(signer.build({"provider": "gutenberg", "provider_id": "1342"}))
    assert payload["direct_url"] == "https://www.gutenberg.org/ebooks/1342.epub3.images"


def test_archive_direct_url_is_derived():
    signer = ReaderTokenSigner("s3cret")
    payload = signer.verify(signer.build({"provider": "archive", "provider_id": "foo bar"}))
    assert payload["direct_url"] == "https://archive.org/download/foo%20bar/foo%20bar.epub"
    assert payload["archive_id"] == "foo bar"


def test_build_without_url_raises():
    signer = ReaderTokenSigner("s3cret")
    with pytest.raises(TokenError):
        signer.build({"provider": "loc", "provider_id": "x"})
    with pytest.raises(TokenError):
        signer.build({"provider": "archive", "provider_id": "12345"})


def test_secret_resolution():
    with pytest.raises(ConfigError):
        ReaderTokenSigner.from_config(ResolverConfig(signing_secret=None, production=True))

    dev = ReaderTokenSigner.from_config(ResolverConfig(signing_secret=None))
    assert dev.verify(dev.build({"direct_url": "https://archive.org/download/a/a.epub"})) is not None

    configured = ReaderTokenSigner.from_config(ResolverConfig(signing_secret="fixed", token_ttl_days=1))
    assert configured.ttl_seconds == 86400
    token = configured.build({"direct_url": "https://archive.org/download/a/a.epub"})
    assert ReaderTokenSigner("fixed").verify(token) is not None


def test_env_secret_precedence(monkeypatch):
    monkeypatch.setenv("APP_SIGNING_SECRET", "first")
    monkeypatch.setenv("JWT_SECRET", "third")
    assert ResolverConfig.from_env().signing_secret == "first"
    monkeypatch.delenv("APP_SIGNING_SECRET")
    monkeypatch.delenv("READER_TOKEN_SECRET", raising=False)
    assert ResolverConfig.from_env().signing_secret == "third"


def test_non_ascii_signature_is_rejected_not_raised():
    signer = ReaderTokenSigner("s3cret")
    body = signer.build({"direct_url": "https://archive.org/download/a/a.epub"}).split(".")[0]
    assert signer.verify(body + ".éé") is None
    assert signer.verify_detailed("abc.é") == (None, "invalid_token")
    assert signer.verify_detailed("éé.abc") == (None, "invalid_token")


def test_numeric_archive_id_does_not_authorize_a_token():
    signer = ReaderTokenSigner("s3cret")
    with pytest.raises(TokenError):
        signer.build({"provider": "archive", "provider_id": "9780262033848", "archive_id": "9780262033848"})
    with pytest.raises(TokenError):
        signer.build({"provider": "archive", "provider_id": "bl-book-9780262033848"})

    payload = signer.verify(
        signer.build({"archive_id": "9780262033848", "direct_url": "https://library.oapen.org/x.pdf"})
    )
    assert "archive_id" not in payload
    assert signer.verify(signer.build({"provider": "archive", "provider_id": "bl-book-foo"}))["archive_id"] == "foo"
