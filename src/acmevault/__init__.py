"""ACME DNS-01 certificate issuance and renewal into a certificate store."""

# version number like 1.2.3a0, must have at least 2 parts, like 1.2
__version__ = '1.0.0.dev0'
