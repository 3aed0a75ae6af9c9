"""Azure DNS and Azure Key Vault adapters."""
import asyncio
import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from azure.core.exceptions import HttpResponseError
from azure.core.exceptions import ResourceNotFoundError
from azure.keyvault.certificates import CertificateContentType
from azure.keyvault.certificates import CertificatePolicy
from azure.keyvault.certificates import KeyType
from azure.keyvault.certificates import WellKnownIssuerNames
from azure.keyvault.certificates.aio import CertificateClient
from azure.mgmt.dns.aio import DnsManagementClient
from azure.mgmt.dns.models import RecordSet
from azure.mgmt.dns.models import TxtRecord

from acmevault import crypto_util
from acmevault import errors
from acmevault import interfaces
from acmevault._internal import constants
from acmevault._internal.request import CertificateRequest
from acmevault._internal.request import DnsProviderOptions

logger = logging.getLogger(__name__)

PENDING_CSR_POLL_INTERVAL = 1
"""Seconds between two reads of a pending certificate operation."""

PENDING_CSR_ATTEMPTS = 30


class AzureDns(interfaces.DnsProvider):
    """`.DnsProvider` for Azure DNS.

    ``zone.provider_account_id`` is the subscription and ``zone.dns_zone_id``
    the resource group of the zone.

    """

    def __init__(self, credential: Any) -> None:
        self.credential = credential
        self._clients: Dict[str, DnsManagementClient] = {}

    async def upsert_txt_record(self, zone: DnsProviderOptions, record_name: str,
                                value: str, ttl: int) -> None:
        client = self._get_azure_client(zone.provider_account_id)
        try:
            await client.record_sets.create_or_update(
                resource_group_name=zone.dns_zone_id,
                zone_name=zone.zone_name,
                relative_record_set_name=record_name,
                record_type='TXT',
                parameters=RecordSet(ttl=ttl, txt_records=[TxtRecord(value=[value])]))
        except HttpResponseError as err:
            raise errors.DnsOperationError('Failed to add TXT record to zone '
                                           '{}, error: {}'.format(zone.zone_name, err))

    async def delete_txt_record(self, zone: DnsProviderOptions, record_name: str) -> None:
        client = self._get_azure_client(zone.provider_account_id)
        try:
            await client.record_sets.delete(
                resource_group_name=zone.dns_zone_id,
                zone_name=zone.zone_name,
                relative_record_set_name=record_name,
                record_type='TXT')
        except HttpResponseError as err:
            if err.status_code != 404:  # Ignore RR not found
                raise errors.CleanupError('Failed to remove TXT record from zone '
                                          '{}, error: {}'.format(zone.zone_name, err))

    def _get_azure_client(self, subscription_id: str) -> DnsManagementClient:
        if subscription_id not in self._clients:
            self._clients[subscription_id] = DnsManagementClient(self.credential,
                                                                 subscription_id)
        return self._clients[subscription_id]

    async def close(self) -> None:
        """Close every client opened so far."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.close()


class AzureKeyVault(interfaces.SecretStore):
    """`.SecretStore` for Azure Key Vault certificates.

    ``store.store_id`` is the vault name and ``store.cert_name`` the
    certificate name inside it.

    """

    def __init__(self, credential: Any,
                 vault_url_template: str = constants.CLI_DEFAULTS['vault_url_template']) -> None:
        self.credential = credential
        self.vault_url_template = vault_url_template
        self._clients: Dict[str, CertificateClient] = {}

    async def get_certificate_metadata(self, store: DnsProviderOptions
                                       ) -> Optional[interfaces.CertificateMetadata]:
        client = self._get_client(store.store_id)
        try:
            certificate = await client.get_certificate(store.cert_name)
        except ResourceNotFoundError:
            logger.debug('Certificate %s not found in %s', store.cert_name, store.store_id)
            return None
        except HttpResponseError as err:
            raise errors.StoreError('Failed to read certificate {} from {}, error: {}'.format(
                store.cert_name, store.store_id, err))
        properties = certificate.properties
        if properties.expires_on is None:
            # pending creation, never issued
            return None
        return interfaces.CertificateMetadata(enabled=bool(properties.enabled),
                                              expires_on=properties.expires_on)

    async def import_certificate(self, store: DnsProviderOptions,
                                 request: CertificateRequest, bundle: bytes) -> None:
        client = self._get_client(store.store_id)
        policy = CertificatePolicy(issuer_name=WellKnownIssuerNames.unknown,
                                   content_type=CertificateContentType.pem,
                                   exportable=request.cert_key.exportable)
        try:
            await client.import_certificate(store.cert_name, bundle, enabled=True,
                                            policy=policy)
        except HttpResponseError as err:
            raise errors.StoreError('Failed to import certificate {} into {}, error: {}'.format(
                store.cert_name, store.store_id, err))

    async def begin_create_certificate(self, store: DnsProviderOptions,
                                       request: CertificateRequest) -> bytes:
        client = self._get_client(store.store_id)
        policy = _pending_policy(request)
        # The creation only completes once a signed certificate is merged,
        # so it is left running while the CSR is read from the operation.
        creation = asyncio.ensure_future(client.create_certificate(store.cert_name, policy))
        try:
            for _ in range(PENDING_CSR_ATTEMPTS):
                if creation.done():
                    creation.result()
                try:
                    operation = await client.get_certificate_operation(store.cert_name)
                except ResourceNotFoundError:
                    operation = None
                if operation is not None and operation.csr:
                    if (operation.status or '').lower() != 'inprogress':
                        raise errors.StoreError(
                            'Certificate operation for {} is {}'.format(
                                store.cert_name, operation.status))
                    return bytes(operation.csr)
                await asyncio.sleep(PENDING_CSR_POLL_INTERVAL)
        except HttpResponseError as err:
            raise errors.StoreError('Failed to create certificate {} in {}, error: {}'.format(
                store.cert_name, store.store_id, err))
        finally:
            creation.cancel()
        raise errors.StoreError('No CSR available for pending certificate {} in {}'.format(
            store.cert_name, store.store_id))

    async def merge_certificate(self, store: DnsProviderOptions,
                                certificates: List[bytes]) -> None:
        client = self._get_client(store.store_id)
        try:
            await client.merge_certificate(store.cert_name, certificates)
        except HttpResponseError as err:
            raise errors.StoreError('Failed to merge certificate {} into {}, error: {}'.format(
                store.cert_name, store.store_id, err))

    def _get_client(self, vault_name: str) -> CertificateClient:
        if vault_name not in self._clients:
            self._clients[vault_name] = CertificateClient(
                self.vault_url_template.format(vault_name), self.credential)
        return self._clients[vault_name]

    async def close(self) -> None:
        """Close every client opened so far."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.close()


def _pending_policy(request: CertificateRequest) -> CertificatePolicy:
    cert_key = request.cert_key
    subject = crypto_util.make_subject(cert_key.common_name, cert_key.subject).rfc4514_string()
    return CertificatePolicy(issuer_name=WellKnownIssuerNames.unknown,
                             subject=subject,
                             san_dns_names=request.domains(),
                             exportable=cert_key.exportable,
                             key_type=KeyType.rsa,
                             key_size=cert_key.key_size,
                             reuse_key=False,
                             content_type=CertificateContentType.pem)
