"""Tests for clone token validation."""

import pytest

from cdi_clone import ClaimRef, TokenRejection, TokenValidationError, TokenValidator, load_public_key

SOURCE = ClaimRef(namespace="ns2", name="source")
TARGET = ClaimRef(namespace="ns", name="target")


@pytest.fixture
def validator(public_key):
    return TokenValidator(public_key)


class TestTokenValidator:
    """Test token signature, expiry and subject checks."""

    def test_valid_token_accepted(self, validator, make_token):
        """Test that a matching, unexpired token is accepted."""
        payload = validator.validate_clone(make_token(), SOURCE, TARGET)

        assert payload.operation == "Clone"
        assert payload.name == "source"
        assert payload.namespace == "ns2"
        assert payload.resource.resource == "persistentvolumeclaims"
        assert payload.params == {"targetNamespace": "ns", "targetName": "target"}

    def test_expired_within_leeway_accepted(self, validator, make_token):
        """Test that clock skew up to the leeway is tolerated."""
        validator.validate_clone(make_token(expires_in=-5), SOURCE, TARGET)

    def test_expired_beyond_leeway_rejected(self, validator, make_token):
        """Test that a token expired longer than the leeway is rejected."""
        with pytest.raises(TokenValidationError) as exc_info:
            validator.validate_clone(make_token(expires_in=-30), SOURCE, TARGET)

        assert exc_info.value.reason == TokenRejection.EXPIRED

    def test_wrong_signing_key_rejected(self, validator, make_token, other_key_pair):
        """Test that a token signed by another key is rejected."""
        token = make_token(key=other_key_pair[0])

        with pytest.raises(TokenValidationError) as exc_info:
            validator.validate_clone(token, SOURCE, TARGET)

        assert exc_info.value.reason == TokenRejection.BAD_SIGNATURE

    def test_malformed_token_rejected(self, validator):
        """Test that garbage is rejected as malformed."""
        with pytest.raises(TokenValidationError) as exc_info:
            validator.validate("not-a-token")

        assert exc_info.value.reason == TokenRejection.MALFORMED

    def test_empty_token_rejected(self, validator):
        """Test that a missing token is rejected as malformed."""
        with pytest.raises(TokenValidationError, match="clone token missing") as exc_info:
            validator.validate("")

        assert exc_info.value.reason == TokenRejection.MALFORMED

    def test_wrong_issuer_rejected(self, validator, make_token):
        """Test that tokens from another issuer are rejected."""
        with pytest.raises(TokenValidationError) as exc_info:
            validator.validate(make_token(issuer="someone-else"))

        assert exc_info.value.reason == TokenRejection.INVALID_CLAIMS

    @pytest.mark.parametrize(
        "overrides",
        [
            {"source_name": "other"},
            {"source_namespace": "other"},
            {"target_name": "other"},
            {"target_namespace": "other"},
            {"operation": "Upload"},
            {"resource": "datavolumes"},
        ],
    )
    def test_mismatched_subject_rejected(self, validator, make_token, overrides):
        """Test that a token for a different clone is rejected."""
        with pytest.raises(TokenValidationError) as exc_info:
            validator.validate_clone(make_token(**overrides), SOURCE, TARGET)

        assert exc_info.value.reason == TokenRejection.SUBJECT_MISMATCH

    def test_invalid_key_rejected(self):
        """Test that the validator refuses a key it cannot use."""
        with pytest.raises(ValueError):
            TokenValidator("not a pem key")

    def test_bytes_key_accepted(self, public_key, make_token):
        """Test that the key may be passed as bytes."""
        validator = TokenValidator(public_key.encode("utf-8"))
        validator.validate_clone(make_token(), SOURCE, TARGET)


class TestLoadPublicKey:
    """Test reading the apiserver key from disk."""

    def test_load_public_key(self, tmp_path, public_key):
        """Test loading a PEM key file."""
        path = tmp_path / "id_rsa.pub"
        path.write_text(public_key)

        assert load_public_key(path) == public_key

    def test_load_invalid_public_key(self, tmp_path):
        """Test that an unusable key file is reported."""
        path = tmp_path / "id_rsa.pub"
        path.write_text("garbage")

        with pytest.raises(ValueError):
            load_public_key(path)
