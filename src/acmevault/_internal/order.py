"""ACME order state machine."""
import asyncio
import enum
import logging
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from acme import challenges
from acme import messages

from acmevault import errors
from acmevault import interfaces
from acmevault._internal.challenge import ChallengeResponder
from acmevault._internal.challenge import validation_record_name
from acmevault._internal.request import CertificateRequest
from acmevault._internal.request import DnsProviderOptions

logger = logging.getLogger(__name__)

DEFAULT_CHALLENGE_TIMEOUT = 120
"""Seconds to wait for the authority to validate one challenge."""


class OrderState(enum.Enum):
    """Progress of one certificate order."""
    START = 'start'
    ACCOUNT_REGISTERED = 'account registered'
    ORDER_PLACED = 'order placed'
    AUTHORIZATIONS_PENDING = 'authorizations pending'
    AUTHORIZATIONS_SATISFIED = 'authorizations satisfied'
    FINALIZED = 'finalized'
    CERTIFICATE_RETRIEVED = 'certificate retrieved'
    FAILED = 'failed'


class AcmeOrderProcess:
    """Drives one certificate order end-to-end.

    Every authorization of the order is satisfied concurrently, each one
    with its own publish/verify/cleanup sequence. The order is judged only
    once all of them reached a terminal outcome, so no failure is reported
    while a challenge record may still be left behind.

    There is no retry at this level: any authority or network error is
    fatal to the order.

    :ivar OrderState state: current state
    :ivar str failure_reason: why the order failed, if it did

    """

    def __init__(self, authority: interfaces.Authority, responder: ChallengeResponder,
                 challenge_timeout: float = DEFAULT_CHALLENGE_TIMEOUT) -> None:
        self.authority = authority
        self.responder = responder
        self.challenge_timeout = challenge_timeout
        self.state = OrderState.START
        self.failure_reason: Optional[str] = None

    async def run(self, request: CertificateRequest, csr_pem: bytes) -> str:
        """Obtain a certificate for ``request`` using ``csr_pem``.

        :returns: issued certificate chain in PEM form
        :rtype: str

        :raises .Error: in which case :attr:`state` is `OrderState.FAILED`

        """
        if self.state is not OrderState.START:
            raise errors.Error(f'Order process already used (state: {self.state.value})')
        try:
            return await self._run(request, csr_pem)
        except Exception as error:
            self._fail(error)
            raise

    async def _run(self, request: CertificateRequest, csr_pem: bytes) -> str:
        logger.debug('Register account')
        await self.authority.create_account(request.acme.contact_email)
        self._transition(OrderState.ACCOUNT_REGISTERED)

        logger.debug('Place new order')
        orderr = await self.authority.create_order(csr_pem)
        _check_identifiers(request, orderr)
        self._transition(OrderState.ORDER_PLACED)

        logger.debug('Get authorizations for order')
        authzrs = await self.authority.get_authorizations(orderr)
        if not authzrs:
            raise errors.AuthorityError('No authorization to handle.')
        self._transition(OrderState.AUTHORIZATIONS_PENDING)

        await self._satisfy_authorizations(request.dns_provider, authzrs)
        self._transition(OrderState.AUTHORIZATIONS_SATISFIED)

        logger.info('Finalizing order for %s', request.common_name)
        orderr = await self.authority.finalize_order(orderr)
        self._transition(OrderState.FINALIZED)

        logger.info('Fetching certificate for %s', request.common_name)
        fullchain_pem = await self.authority.get_certificate(orderr)
        self._transition(OrderState.CERTIFICATE_RETRIEVED)
        return fullchain_pem

    async def _satisfy_authorizations(self, zone: DnsProviderOptions,
                                      authzrs: List[messages.AuthorizationResource]) -> None:
        _check_distinct_records(
            zone, [authzr for authzr in authzrs if authzr.body.status != messages.STATUS_VALID])
        results = await asyncio.gather(
            *(self._authorize(zone, authzr) for authzr in authzrs),
            return_exceptions=True)

        failures: List[Tuple[str, BaseException]] = []
        for authzr, result in zip(authzrs, results):
            if isinstance(result, Exception):
                domain = authzr.body.identifier.value
                logger.info('Challenge failed for domain %s: %s', domain, result)
                failures.append((domain, result))
            elif isinstance(result, BaseException):
                raise result
        if failures:
            raise errors.FailedAuthorizations(failures)

    async def _authorize(self, zone: DnsProviderOptions,
                         authzr: messages.AuthorizationResource) -> None:
        domain = authzr.body.identifier.value
        if authzr.body.status == messages.STATUS_VALID:
            logger.debug('Authorization for %s is already valid', domain)
            return

        challb = _find_dns_challenge(authzr)
        logger.debug('Get the challenge key for %s', domain)
        response, validation = self.authority.key_authorization(challb)

        logger.debug('Satisfy challenge for %s', domain)
        async with self.responder.guard(zone, authzr, validation):
            logger.debug('Verify challenge for %s', domain)
            await self.authority.verify_challenge(authzr, challb, validation)

            logger.debug('Complete challenge for %s', domain)
            await self.authority.complete_challenge(challb, response)

            logger.debug('Wait for valid status for %s', domain)
            await self.authority.wait_for_valid_status(authzr, self.challenge_timeout)

    def _transition(self, state: OrderState) -> None:
        logger.debug('Order state: %s -> %s', self.state.value, state.value)
        self.state = state

    def _fail(self, error: BaseException) -> None:
        logger.debug('Order failed in state %s: %s', self.state.value, error)
        self.failure_reason = str(error) or type(error).__name__
        self.state = OrderState.FAILED


def _find_dns_challenge(authzr: messages.AuthorizationResource) -> messages.ChallengeBody:
    """Only the DNS challenge is supported."""
    for challb in authzr.body.challenges or ():
        if isinstance(challb.chall, challenges.DNS01):
            return challb
    raise errors.ValidationError(
        f'No DNS challenge found for {authzr.body.identifier.value}')


def _check_identifiers(request: CertificateRequest, orderr: messages.OrderResource) -> None:
    expected = {domain.lower() for domain in request.domains()}
    ordered = {identifier.value.lower() for identifier in orderr.body.identifiers or ()}
    if ordered != expected:
        raise errors.AuthorityError(
            'Order identifiers {0} do not match requested names {1}'.format(
                ', '.join(sorted(ordered)), ', '.join(sorted(expected))))


def _check_distinct_records(zone: DnsProviderOptions,
                            authzrs: List[messages.AuthorizationResource]) -> None:
    """Concurrent authorizations must never share a validation record."""
    seen: Dict[str, str] = {}
    for authzr in authzrs:
        domain = authzr.body.identifier.value
        record_name = validation_record_name(zone.zone_name, domain)
        if record_name in seen:
            raise errors.ValidationError(
                'Authorizations for {0} and {1} share the validation record {2}'.format(
                    seen[record_name], domain, record_name))
        seen[record_name] = domain
