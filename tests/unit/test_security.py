import pytest

from core.security import (
    compute_signature,
    validate_credential_strength,
    validate_production_secrets,
    check_secrets_on_startup,
    verify_signature,
)

SECRET = "s3cr3t-webhook-key"
PAYLOAD = b'{"ref": "refs/heads/main"}'


class TestVerifySignature:
    def test_valid_signature(self):
        assert verify_signature(PAYLOAD, compute_signature(PAYLOAD, SECRET), SECRET)

    def test_known_vector(self):
        # HMAC-SHA256 of an empty body with key "key"
        assert compute_signature(b"", "key") == (
            "sha256=5d5d139563c95b5967b9bd9a8c9b233a9dedb45072794cd232dc1b74832607d0"
        )

    def test_all_zero_signature_rejected(self):
        assert not verify_signature(PAYLOAD, "sha256=" + "0" * 64, SECRET)

    def test_any_payload_byte_flip_rejected(self):
        signature = compute_signature(PAYLOAD, SECRET)
        for i in range(len(PAYLOAD)):
            tampered = bytearray(PAYLOAD)
            tampered[i] ^= 0x01
            assert not verify_signature(bytes(tampered), signature, SECRET)

    def test_any_signature_char_change_rejected(self):
        signature = compute_signature(PAYLOAD, SECRET)
        for i in range(len("sha256="), len(signature)):
            replacement = "0" if signature[i] != "0" else "1"
            forged = signature[:i] + replacement + signature[i + 1:]
            assert not verify_signature(PAYLOAD, forged, SECRET)

    def test_wrong_secret(self):
        signature = compute_signature(PAYLOAD, "other")
        assert not verify_signature(PAYLOAD, signature, SECRET)

    @pytest.mark.parametrize("header", [None, "", "sha256=", "sha1=abc", "garbage"])
    def test_missing_or_malformed_header(self, header):
        assert not verify_signature(PAYLOAD, header, SECRET)

    def test_non_ascii_header(self):
        assert not verify_signature(PAYLOAD, "sha256=ünïcode", SECRET)

    def test_empty_secret_never_verifies(self):
        assert not verify_signature(PAYLOAD, compute_signature(PAYLOAD, ""), "")
        assert not verify_signature(PAYLOAD, compute_signature(PAYLOAD, ""), None)


class TestCredentialStrength:
    def test_strong_credential(self):
        ok, issues = validate_credential_strength("Xk9#mP2$vL5nQ8@wR3jT6yB1cF4hG7dZ")
        assert ok
        assert issues == []

    def test_weak_credentials(self):
        ok, issues = validate_credential_strength("secret")
        assert not ok
        assert any("forbidden" in i for i in issues)
        assert any("too short" in i for i in issues)

    def test_empty(self):
        ok, issues = validate_credential_strength("")
        assert not ok
        assert issues == ["Credential is empty"]

    def test_missing_production_secrets(self):
        ok, issues = validate_production_secrets(None, None)
        assert not ok
        assert "API_KEY is not set" in issues
        assert any(i.startswith("GITHUB_WEBHOOK_SECRET") for i in issues)

    def test_strict_startup_check_raises(self):
        with pytest.raises(ValueError):
            check_secrets_on_startup("weak", None, strict=True)

    def test_lenient_startup_check_only_logs(self):
        check_secrets_on_startup("weak", None, strict=False)
