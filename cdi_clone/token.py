"""Clone authorization token validation."""

import logging
from pathlib import Path
from typing import Union

from jose import ExpiredSignatureError, JOSEError, JWTError, jwk, jwt
from jose.exceptions import JWTClaimsError
from pydantic import ValidationError

from .constants import (
    APISERVER_PUBLIC_KEY_PATH,
    CLONE_TOKEN_ISSUER,
    CLONE_TOKEN_LEEWAY_SECONDS,
    OPERATION_CLONE,
    PVC_RESOURCE,
)
from .errors import TokenValidationError
from .models import ClaimRef, CloneTokenPayload, TokenRejection

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "RS256"


def load_public_key(path: Union[str, Path] = APISERVER_PUBLIC_KEY_PATH) -> str:
    """
    Read the apiserver's PEM encoded RSA public key.

    Raises:
        FileNotFoundError: If the key file does not exist
        ValueError: If the file does not hold a usable RSA key
    """
    public_key = Path(path).read_text()
    try:
        jwk.construct(public_key, algorithm=TOKEN_ALGORITHM)
    except JOSEError as e:
        raise ValueError(f"Invalid apiserver public key in {path}: {e}") from e
    return public_key


class TokenValidator:
    """
    Verifies clone tokens signed by the CDI apiserver.

    Holds no mutable state after construction and can be shared between
    worker threads.
    """

    def __init__(
        self,
        public_key: Union[str, bytes],
        issuer: str = CLONE_TOKEN_ISSUER,
        leeway: int = CLONE_TOKEN_LEEWAY_SECONDS,
    ):
        """
        Initialize token validator.

        Args:
            public_key: PEM encoded RSA public key of the token issuer
            issuer: Expected "iss" claim
            leeway: Seconds of clock skew tolerated on exp/nbf/iat

        Raises:
            ValueError: If the key cannot be used for RS256 verification
        """
        if isinstance(public_key, bytes):
            public_key = public_key.decode("utf-8")
        try:
            jwk.construct(public_key, algorithm=TOKEN_ALGORITHM)
        except JOSEError as e:
            raise ValueError(f"Invalid token verification key: {e}") from e

        self._public_key = public_key
        self.issuer = issuer
        self.leeway = leeway

    def validate(self, token: str) -> CloneTokenPayload:
        """
        Verify a token's signature, issuer and validity window.

        Args:
            token: Compact serialized JWT

        Returns:
            Decoded token payload

        Raises:
            TokenValidationError: If the token is rejected
        """
        if not token:
            raise TokenValidationError(TokenRejection.MALFORMED, "clone token missing")

        try:
            jwt.get_unverified_claims(token)
        except JWTError as e:
            raise TokenValidationError(TokenRejection.MALFORMED, str(e)) from e

        try:
            claims = jwt.decode(
                token,
                self._public_key,
                algorithms=[TOKEN_ALGORITHM],
                issuer=self.issuer,
                options={"leeway": self.leeway, "verify_aud": False},
            )
        except ExpiredSignatureError as e:
            raise TokenValidationError(TokenRejection.EXPIRED, str(e)) from e
        except JWTClaimsError as e:
            raise TokenValidationError(TokenRejection.INVALID_CLAIMS, str(e)) from e
        except JWTError as e:
            raise TokenValidationError(TokenRejection.BAD_SIGNATURE, str(e)) from e

        if "exp" not in claims:
            raise TokenValidationError(TokenRejection.INVALID_CLAIMS, "token has no expiry")

        try:
            return CloneTokenPayload.model_validate(claims)
        except ValidationError as e:
            raise TokenValidationError(TokenRejection.MALFORMED, str(e)) from e

    def validate_clone(
        self,
        token: str,
        source: ClaimRef,
        target: ClaimRef,
        operation: str = OPERATION_CLONE,
    ) -> CloneTokenPayload:
        """
        Verify that a token authorizes cloning ``source`` into ``target``.

        Args:
            token: Compact serialized JWT
            source: Source claim
            target: Target claim
            operation: Operation the token must grant

        Returns:
            Decoded token payload

        Raises:
            TokenValidationError: If the token is invalid or issued for another pair
        """
        payload = self.validate(token)

        if (
            payload.operation != operation
            or payload.name != source.name
            or payload.namespace != source.namespace
            or payload.resource.resource != PVC_RESOURCE
            or payload.params.get("targetNamespace") != target.namespace
            or payload.params.get("targetName") != target.name
        ):
            logger.debug(
                f"Token for {payload.namespace}/{payload.name} -> "
                f"{payload.params.get('targetNamespace')}/{payload.params.get('targetName')} "
                f"({payload.operation}) does not match {source.key} -> {target.key}"
            )
            raise TokenValidationError(
                TokenRejection.SUBJECT_MISMATCH,
                f"token does not authorize {operation} of {source.key} into {target.key}",
            )
        return payload
