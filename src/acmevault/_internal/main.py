"""acmevault main entry point."""
import asyncio
import contextlib
import datetime
import logging
import sys
from typing import AsyncIterator
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

from azure.identity.aio import DefaultAzureCredential

from acmevault import errors
from acmevault._internal import cli
from acmevault._internal import coordinator
from acmevault._internal import log
from acmevault._internal import request as request_module
from acmevault._internal.acme_client import AcmeAuthority
from acmevault._internal.azure import AzureDns
from acmevault._internal.azure import AzureKeyVault
from acmevault._internal.catalogue import DirectoryCatalogue
from acmevault._internal.configuration import NamespaceConfig
from acmevault._internal.renewal import RenewalSelector
from acmevault._internal.renewal import Selection
from acmevault._internal.request import CertificateRequest
from acmevault._internal.store import CertificateStore
from acmevault._internal.workflow import AuthorityFactory
from acmevault._internal.workflow import IssuanceWorkflow

logger = logging.getLogger(__name__)


def authority_factory(config: NamespaceConfig) -> AuthorityFactory:
    """Builds one `.AcmeAuthority` per request, for its directory."""
    def factory(request: CertificateRequest) -> AcmeAuthority:
        return AcmeAuthority(request.acme.directory_url,
                             check_propagation=config.check_propagation,
                             propagation_seconds=config.propagation_seconds,
                             finalize_timeout=config.finalize_timeout)
    return factory


@contextlib.asynccontextmanager
async def azure_clients(config: NamespaceConfig
                        ) -> AsyncIterator[Tuple[AzureDns, AzureKeyVault]]:
    """DNS and Key Vault adapters sharing one credential, closed on exit."""
    credential = DefaultAzureCredential()
    dns = AzureDns(credential)
    vault = AzureKeyVault(credential, config.vault_url_template)
    try:
        yield dns, vault
    finally:
        await dns.close()
        await vault.close()
        await credential.close()


async def _renew(config: NamespaceConfig) -> coordinator.RenewalReport:
    async with azure_clients(config) as (dns, vault):
        store = CertificateStore(vault)
        selector = RenewalSelector(DirectoryCatalogue(config.requests_dir), store)
        workflow = IssuanceWorkflow(authority_factory(config), dns, store,
                                    config.key_source, config.challenge_timeout)
        return await coordinator.RenewalCoordinator(selector, workflow).run(
            threshold_days=config.renew_days_threshold)


async def _select(config: NamespaceConfig) -> Selection:
    async with azure_clients(config) as (_, vault):
        selector = RenewalSelector(DirectoryCatalogue(config.requests_dir),
                                   CertificateStore(vault))
        return await selector.select(datetime.datetime.now(datetime.timezone.utc),
                                     config.renew_days_threshold)


async def _issue(config: NamespaceConfig, request: CertificateRequest) -> None:
    async with azure_clients(config) as (dns, vault):
        workflow = IssuanceWorkflow(authority_factory(config), dns, CertificateStore(vault),
                                    config.key_source, config.challenge_timeout)
        await workflow.run(request)
        orphaned = workflow.responder.orphaned_records
    if orphaned:
        logger.error('The following challenge records could not be removed: %s',
                     ', '.join(orphaned))


def renew(config: NamespaceConfig) -> None:
    """Issue every certificate that is missing or due for renewal.

    :raises .Error: after reporting, if any renewal failed or any request
        document was invalid

    """
    result = asyncio.run(_renew(config))
    coordinator.describe_results(result)
    if result.failed or result.invalid:
        raise errors.Error("{0} renew failure(s), {1} parse failure(s)".format(
            len(result.failed), len(result.invalid)))
    logger.debug("no renewal failures")


def list_due(config: NamespaceConfig) -> None:
    """Show the certificates `renew` would issue."""
    selection = asyncio.run(_select(config))
    if not selection.due:
        print("No certificates are due for renewal.")
    for request in selection.due:
        print("{0} ({1}/{2}): {3}".format(
            request.common_name, request.dns_provider.store_id,
            request.dns_provider.cert_name, ", ".join(request.domains())))
    for name, reason in selection.failures:
        print(f"{name} is invalid: {reason}", file=sys.stderr)


def issue(config: NamespaceConfig) -> None:
    """Issue the certificate of a single request document, due or not."""
    try:
        with open(config.request_file, 'rb') as f:
            raw = f.read()
    except OSError as error:
        raise errors.Error(f"Unable to read {config.request_file}: {error}")
    request = request_module.from_document(raw)
    asyncio.run(_issue(config, request))


VERBS = {
    "renew": renew,
    "list": list_due,
    "issue": issue,
}


def main(cli_args: Optional[List[str]] = None) -> Optional[Union[str, int]]:
    """Run acmevault.

    :param cli_args: command line to acmevault, defaults to ``sys.argv[1:]``
    :type cli_args: `list` of `str`

    :returns: value for `sys.exit` about the exit status of acmevault
    :rtype: `str` or `int` or `None`

    """
    if cli_args is None:
        cli_args = sys.argv[1:]

    log.pre_arg_parse_setup()
    config = cli.prepare_and_parse_args(cli_args)
    log.post_arg_parse_setup(config)

    VERBS[config.verb](config)
    return None
