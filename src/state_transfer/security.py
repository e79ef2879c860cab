"""
Security utilities for state transfer operations.

This module provides input validation for names and command-line flags that
end up inside generated resources, plus generation of the credentials and TLS
material handed to the transfer workloads.
"""

import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .exceptions import ValidationError


class SecurityValidator:
    """Security validation utilities."""

    LABEL_VALUE_MAX_LENGTH = 63
    DNS1123_LABEL_MAX_LENGTH = 63
    DNS1123_SUBDOMAIN_MAX_LENGTH = 253

    LABEL_VALUE_PATTERN = re.compile(r"^(([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?$")
    QUALIFIED_NAME_PATTERN = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]$")
    DNS1123_LABEL_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    DNS1123_SUBDOMAIN_PATTERN = re.compile(
        r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
    )
    RSYNC_INFO_PATTERN = re.compile(r"^[A-Z]+\d?$")
    # -x, --long, --long-flag, --long-flag=value
    RSYNC_EXTRA_PATTERN = re.compile(r"^(-[a-zA-Z0-9]|--[a-z0-9]+(-[a-z0-9]+)*(=\S+)?)$")

    @staticmethod
    def is_label_value(value: str) -> bool:
        """Return True when value may be used as a Kubernetes label value."""
        return (
            isinstance(value, str)
            and len(value) <= SecurityValidator.LABEL_VALUE_MAX_LENGTH
            and SecurityValidator.LABEL_VALUE_PATTERN.match(value) is not None
        )

    @staticmethod
    def is_dns1123_label(value: str) -> bool:
        return (
            isinstance(value, str)
            and 0 < len(value) <= SecurityValidator.DNS1123_LABEL_MAX_LENGTH
            and SecurityValidator.DNS1123_LABEL_PATTERN.match(value) is not None
        )

    @staticmethod
    def is_dns1123_subdomain(value: str) -> bool:
        return (
            isinstance(value, str)
            and 0 < len(value) <= SecurityValidator.DNS1123_SUBDOMAIN_MAX_LENGTH
            and SecurityValidator.DNS1123_SUBDOMAIN_PATTERN.match(value) is not None
        )

    @staticmethod
    def label_key_errors(key: str) -> List[str]:
        """
        Check a label key (``[prefix/]name``).

        Args:
            key: Label key to check

        Returns:
            List[str]: Problems found, empty when the key is valid
        """
        errors: List[str] = []
        if not key:
            return ["label key must be non-empty"]

        name = key
        if "/" in key:
            prefix, _, name = key.partition("/")
            if not SecurityValidator.is_dns1123_subdomain(prefix):
                errors.append(
                    f"label key {key!r}: prefix must be a DNS-1123 subdomain"
                )
        if not name or len(name) > SecurityValidator.LABEL_VALUE_MAX_LENGTH:
            errors.append(
                f"label key {key!r}: name must be 1-"
                f"{SecurityValidator.LABEL_VALUE_MAX_LENGTH} characters"
            )
        elif not SecurityValidator.QUALIFIED_NAME_PATTERN.match(name):
            errors.append(
                f"label key {key!r}: name must consist of alphanumerics, "
                "'-', '_' or '.' and start and end with an alphanumeric"
            )
        return errors

    @staticmethod
    def validate_rsync_info_flag(value: str) -> str:
        """
        Validate one value passed to rsync ``--info``.

        Raises:
            ValidationError: If the value is not of the form FLAG or FLAG<digit>
        """
        if not SecurityValidator.RSYNC_INFO_PATTERN.match(value or ""):
            raise ValidationError(
                f"invalid value {value!r} for --info", validation_type="rsync"
            )
        return value

    @staticmethod
    def validate_rsync_extra_flag(value: str) -> str:
        """
        Validate an arbitrary extra rsync flag.

        Raises:
            ValidationError: If the flag is not -x or --long[-flag][=value]
        """
        if not SecurityValidator.RSYNC_EXTRA_PATTERN.match(value or ""):
            raise ValidationError(
                f"invalid extra option {value!r}", validation_type="rsync"
            )
        return value


PASSWORD_ALPHABET = string.ascii_letters
PASSWORD_LENGTH = 24


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Return a random password drawn from a-zA-Z using the OS CSPRNG."""
    if length <= 0:
        raise ValidationError("password length must be positive", "credentials")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class TLSMaterial:
    """PEM encoded CA, certificate and private key."""

    ca: bytes
    crt: bytes
    key: bytes


CERT_KEY_SIZE = 4096
CERT_SERIAL = 2020
CERT_VALIDITY = timedelta(days=3650)


def generate_ssl_cert() -> TLSMaterial:
    """
    Generate a self-signed certificate that is also used as its own CA.

    Returns:
        TLSMaterial: PEM ``CERTIFICATE`` twice (ca and crt) and a PKCS#1
        ``RSA PRIVATE KEY``
    """
    private_key = rsa.generate_private_key(
        public_exponent=65537, key_size=CERT_KEY_SIZE
    )
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "NC"),
            x509.NameAttribute(NameOID.LOCALITY_NAME, "RDU"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Migration Engineering"),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Engineering"),
            x509.NameAttribute(NameOID.COMMON_NAME, "openshift.io"),
        ]
    )
    not_before = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(CERT_SERIAL)
        .not_valid_before(not_before)
        .not_valid_after(not_before + CERT_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage(
                [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]
            ),
            critical=False,
        )
        .sign(private_key, hashes.SHA256())
    )

    crt = certificate.public_bytes(serialization.Encoding.PEM)
    key = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return TLSMaterial(ca=crt, crt=crt, key=key)
