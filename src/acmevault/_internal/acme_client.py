"""ACME certificate authority adapter."""
import asyncio
import datetime
import logging
from typing import Any
from typing import Callable
from typing import List
from typing import Optional
from typing import Set
from typing import Tuple

from acme import challenges
from acme import client as acme_client
from acme import errors as acme_errors
from acme import messages
from cryptography.hazmat.primitives.asymmetric import rsa
import dns.asyncresolver
import dns.exception
import josepy as jose
import requests

from acmevault import __version__
from acmevault import errors
from acmevault import interfaces

logger = logging.getLogger(__name__)

USER_AGENT = f'acmevault/{__version__}'

ACCOUNT_KEY_SIZE = 2048
"""Size of the RSA key generated for every account."""

DEFAULT_POLL_INTERVAL = 3
"""Seconds between two polls when the server sends no Retry-After."""

_PROTOCOL_ERRORS = (acme_errors.Error, jose.DeserializationError,
                    requests.exceptions.RequestException)


class AcmeAuthority(interfaces.Authority):
    """`.Authority` backed by the `acme` library's `~acme.client.ClientV2`.

    A fresh account key is generated for each instance. `acme` is
    synchronous, so every protocol call runs in a worker thread.

    :param str directory_url: ACME directory URL
    :param bool check_propagation: look the validation record up in DNS
        before answering the challenge
    :param float propagation_seconds: how long to wait for the record to
        become visible
    :param float finalize_timeout: how long to wait for issuance

    """

    def __init__(self, directory_url: str, check_propagation: bool = True,
                 propagation_seconds: float = 60, finalize_timeout: float = 90,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 resolver: Optional[dns.asyncresolver.Resolver] = None) -> None:
        self.directory_url = directory_url
        self.check_propagation = check_propagation
        self.propagation_seconds = propagation_seconds
        self.finalize_timeout = finalize_timeout
        self.poll_interval = poll_interval
        self.resolver = resolver
        self.account_key: Optional[jose.JWKRSA] = None
        self._client: Optional[acme_client.ClientV2] = None

    @property
    def acme(self) -> acme_client.ClientV2:
        """The ACME client, once an account is registered."""
        if self._client is None:
            raise errors.Error('No ACME account registered yet')
        return self._client

    async def create_account(self, email: str) -> messages.RegistrationResource:
        key = await asyncio.to_thread(
            rsa.generate_private_key, public_exponent=65537, key_size=ACCOUNT_KEY_SIZE)
        self.account_key = jose.JWKRSA(key=key)
        net = acme_client.ClientNetwork(self.account_key, user_agent=USER_AGENT)
        directory = await _call(acme_client.ClientV2.get_directory, self.directory_url, net)
        self._client = acme_client.ClientV2(directory, net)

        new_regr = messages.NewRegistration.from_data(email=email,
                                                      terms_of_service_agreed=True)
        try:
            regr = await asyncio.to_thread(self._client.new_account, new_regr)
        except acme_errors.ConflictError as error:
            logger.debug('Account already exists at %s', error.location)
            regr = messages.RegistrationResource(uri=error.location,
                                                 body=messages.Registration())
            regr = await _call(self._client.query_registration, regr)
        except _PROTOCOL_ERRORS as error:
            raise errors.AuthorityError(f'Account registration failed: {error}') from error
        logger.debug('Registered account %s', regr.uri)
        return regr

    async def create_order(self, csr_pem: bytes) -> messages.OrderResource:
        return await _call(self.acme.new_order, csr_pem)

    async def get_authorizations(self, orderr: messages.OrderResource
                                 ) -> List[messages.AuthorizationResource]:
        return list(orderr.authorizations)

    def key_authorization(self, challb: messages.ChallengeBody
                          ) -> Tuple[challenges.ChallengeResponse, str]:
        if self.account_key is None:
            raise errors.Error('No ACME account registered yet')
        return challb.chall.response_and_validation(self.account_key)

    async def verify_challenge(self, authzr: messages.AuthorizationResource,
                               challb: messages.ChallengeBody, validation: str) -> None:
        if not self.check_propagation:
            return
        name = challb.chall.validation_domain_name(authzr.body.identifier.value)
        resolver = self.resolver or dns.asyncresolver.Resolver()
        deadline = datetime.datetime.now() + datetime.timedelta(
            seconds=self.propagation_seconds)
        while True:
            found = await _lookup_txt(resolver, name)
            if validation in found:
                logger.debug('Validation record %s is visible', name)
                return
            if datetime.datetime.now() >= deadline:
                raise errors.DnsOperationError(
                    f'Validation record {name} not visible after '
                    f'{self.propagation_seconds} seconds')
            logger.debug('Validation record %s not visible yet; waiting', name)
            await asyncio.sleep(self.poll_interval)

    async def complete_challenge(self, challb: messages.ChallengeBody,
                                 response: challenges.ChallengeResponse) -> None:
        await _call(self.acme.answer_challenge, challb, response)

    async def wait_for_valid_status(self, authzr: messages.AuthorizationResource,
                                    timeout: float) -> messages.AuthorizationResource:
        domain = authzr.body.identifier.value
        deadline = datetime.datetime.now() + datetime.timedelta(seconds=timeout)
        while True:
            authzr, response = await _call(self.acme.poll, authzr)
            status = authzr.body.status
            if status == messages.STATUS_VALID:
                return authzr
            if status == messages.STATUS_INVALID:
                raise errors.AuthorityError(_describe_invalid(authzr))
            now = datetime.datetime.now()
            if now >= deadline:
                raise errors.AuthorityError(
                    f'Timed out waiting for the validation of {domain}')
            retry_at = self.acme.retry_after(response, int(self.poll_interval))
            delay = min(max((retry_at - now).total_seconds(), 0),
                        (deadline - now).total_seconds())
            logger.debug('Authorization for %s is %s; polling again in %.1f seconds',
                         domain, status, delay)
            await asyncio.sleep(delay)

    async def finalize_order(self, orderr: messages.OrderResource) -> messages.OrderResource:
        deadline = datetime.datetime.now() + datetime.timedelta(seconds=self.finalize_timeout)
        return await _call(self.acme.finalize_order, orderr, deadline)

    async def get_certificate(self, orderr: messages.OrderResource) -> str:
        if not orderr.fullchain_pem:
            raise errors.AuthorityError('Finalized order carries no certificate')
        return orderr.fullchain_pem


async def _call(func: Callable[..., Any], *args: Any) -> Any:
    """Run a blocking ACME call in a thread, translating its errors."""
    try:
        return await asyncio.to_thread(func, *args)
    except _PROTOCOL_ERRORS as error:
        raise errors.AuthorityError(str(error) or type(error).__name__) from error


async def _lookup_txt(resolver: dns.asyncresolver.Resolver, name: str) -> Set[str]:
    try:
        answer = await resolver.resolve(name, 'TXT')
    except dns.exception.DNSException as error:
        logger.debug('TXT lookup for %s failed: %s', name, error)
        return set()
    return {b''.join(rdata.strings).decode() for rdata in answer}


def _describe_invalid(authzr: messages.AuthorizationResource) -> str:
    domain = authzr.body.identifier.value
    for challb in authzr.body.challenges:
        if challb.error is not None:
            return f'{domain}: {challb.error}'
    return f'{domain}: authorization is invalid'
