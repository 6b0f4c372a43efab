"""
Tests for service bootstrap, settings and callback routing.
"""

import pytest

from errors import UnknownRequest
from oracle import LocalOracle, RequestKind, encode_credentials, encode_eligibility
from registry import CredentialRegistry
from registration_store import Ciphertexts
from settings import Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(db_path=tmp_path / "bootstrap.db")


def _close(registry):
    registry.ledger.close()


class TestBootstrap:
    def test_keys_generated_on_first_boot(self, settings):
        registry = CredentialRegistry.bootstrap(settings)
        keys = registry.ledger.get_service_keys()
        assert "PUBLIC KEY" in keys["oracle_public_key"]
        assert "PRIVATE KEY" in keys["oracle_private_key"]
        assert keys["registrar_secret"]
        assert isinstance(registry.oracle, LocalOracle)
        _close(registry)

    def test_keys_not_regenerated(self, settings):
        first = CredentialRegistry.bootstrap(settings)
        keys1 = first.ledger.get_service_keys()
        _close(first)
        second = CredentialRegistry.bootstrap(settings)
        assert second.ledger.get_service_keys() == keys1
        _close(second)

    def test_configured_registrar_secret(self, settings):
        settings.registrar_secret = "from-env"
        registry = CredentialRegistry.bootstrap(settings)
        assert registry.ledger.get_service_keys()["registrar_secret"] == "from-env"
        _close(registry)

    def test_external_oracle_key(self, settings, tmp_path, oracle_keys):
        private_key, public_key = oracle_keys
        key_path = tmp_path / "oracle.pem"
        key_path.write_text(public_key)
        settings.oracle_public_key_path = key_path

        oracle = LocalOracle(private_key)
        registry = CredentialRegistry.bootstrap(settings, oracle=oracle)
        assert registry.oracle is oracle
        assert registry.ledger.get_service_keys()["oracle_private_key"] is None
        _close(registry)

    def test_external_key_without_oracle_fails(self, settings, tmp_path, oracle_keys):
        key_path = tmp_path / "oracle.pem"
        key_path.write_text(oracle_keys[1])
        settings.oracle_public_key_path = key_path
        with pytest.raises(RuntimeError):
            CredentialRegistry.bootstrap(settings)


class TestSettings:
    def test_defaults(self):
        s = Settings.from_env({})
        assert s.port == 5000
        assert s.debug is False
        assert s.oracle_public_key_path is None
        assert s.registrar_secret is None
        assert s.log_level == "INFO"

    def test_from_env(self, tmp_path):
        s = Settings.from_env({
            "SECUREVOTE_DB_PATH": str(tmp_path / "x.db"),
            "SECUREVOTE_ORACLE_PUBLIC_KEY": str(tmp_path / "k.pem"),
            "SECUREVOTE_REGISTRAR_SECRET": "s3cret",
            "PORT": "8080",
            "DEBUG": "True",
            "SECUREVOTE_LOG_LEVEL": "debug",
        })
        assert s.db_path == tmp_path / "x.db"
        assert s.oracle_public_key_path == tmp_path / "k.pem"
        assert s.registrar_secret == "s3cret"
        assert s.port == 8080
        assert s.debug is True
        assert s.log_level == "DEBUG"


class TestCallbackRouting:
    def test_routes_by_kind(self, registry, registrar):
        registration_id = registry.registrations.submit(Ciphertexts("n", "d", "a", "f"))
        rid = registry.verification.request_verification(registrar, registration_id)
        assert registry.handle_callback(
            "verification", *registry.oracle.fulfil(rid, encode_eligibility(True))
        ) == registration_id

        rid = registry.issuance.request_issuance(registrar, registration_id, "C")
        assert registry.handle_callback(
            RequestKind.ISSUANCE, *registry.oracle.fulfil(rid, encode_credentials(["ANON-9"]))
        ) == registration_id
        assert registry.registrations.get_credential(registration_id) == ("ANON-9", True)

    def test_wrong_kind_is_unknown(self, registry, registrar):
        registration_id = registry.registrations.submit(Ciphertexts("n", "d", "a", "f"))
        rid = registry.verification.request_verification(registrar, registration_id)
        with pytest.raises(UnknownRequest):
            registry.handle_callback(
                "issuance", *registry.oracle.fulfil(rid, encode_credentials(["X"]))
            )
        assert [p["kind"] for p in registry.pending_requests()] == ["verification"]
