"""Concurrent renewal of every due certificate."""
import asyncio
import datetime
import logging
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Tuple

from acmevault._internal.renewal import report
from acmevault._internal.renewal import RenewalSelector
from acmevault._internal.workflow import IssuanceWorkflow

logger = logging.getLogger(__name__)

SIDE_FRAME = '- ' * 39 + '-'


class RenewalReport(NamedTuple):
    """Aggregate outcome of one renewal run.

    :ivar list succeeded: names of the certificates issued
    :ivar list failed: ``(name, reason)`` of the workflows that failed
    :ivar list skipped: request documents not due for renewal
    :ivar list invalid: ``(name, reason)`` of unusable request documents
    :ivar list orphaned_records: challenge records that could not be removed

    """
    succeeded: List[str]
    failed: List[Tuple[str, str]]
    skipped: List[str]
    invalid: List[Tuple[str, str]]
    orphaned_records: List[str]


class RenewalCoordinator:
    """Runs one issuance workflow per selected request, all at once.

    A failing workflow neither cancels the others nor fails the run; the
    run completes once every workflow finished.

    """

    def __init__(self, selector: RenewalSelector, workflow: IssuanceWorkflow) -> None:
        self.selector = selector
        self.workflow = workflow

    async def run(self, now: Optional[datetime.datetime] = None,
                  threshold_days: float = 30) -> RenewalReport:
        if now is None:
            now = datetime.datetime.now(datetime.timezone.utc)
        selection = await self.selector.select(now, threshold_days)
        result = RenewalReport([], [], list(selection.skipped), list(selection.failures), [])
        if not selection.due:
            logger.info('No certificates are due for renewal')
            return result

        orphaned_before = len(self.workflow.responder.orphaned_records)
        outcomes = await asyncio.gather(
            *(self.workflow.run(request) for request in selection.due),
            return_exceptions=True)

        for request, outcome in zip(selection.due, outcomes):
            name = request.dns_provider.cert_name
            if isinstance(outcome, Exception):
                logger.error('Failed to renew certificate %s with error: %s', name, outcome)
                logger.debug('Traceback was:', exc_info=outcome)
                result.failed.append((name, str(outcome) or type(outcome).__name__))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.succeeded.append(name)
        result.orphaned_records.extend(
            self.workflow.responder.orphaned_records[orphaned_before:])
        return result


def describe_results(result: RenewalReport) -> None:
    """Log a human readable summary of ``result``."""
    notify = logger.info
    notify_error = logger.error

    notify(f'\n{SIDE_FRAME}')

    if result.skipped:
        notify("The following certificates are not due for renewal yet:")
        notify(report(result.skipped, "skipped"))
    succeeded = result.succeeded
    failed = [f'{name}: {reason}' for name, reason in result.failed]
    if not succeeded and not failed:
        notify("No renewals were attempted.")
    elif succeeded and not failed:
        notify("Congratulations, all renewals succeeded: ")
        notify(report(succeeded, "success"))
    elif failed and not succeeded:
        notify_error("All renewals failed. The following certificates could "
                     "not be renewed:")
        notify_error(report(failed, "failure"))
    else:
        notify("The following renewals succeeded:")
        notify(report(succeeded, "success") + "\n")
        notify_error("The following renewals failed:")
        notify_error(report(failed, "failure"))

    if result.invalid:
        notify("\nAdditionally, the following request documents "
               "were invalid: ")
        notify(report((f'{name}: {reason}' for name, reason in result.invalid), "parsefail"))

    if result.orphaned_records:
        notify_error("\nThe following challenge records could not be removed "
                     "and must be deleted manually:")
        notify_error(report(result.orphaned_records, "orphaned"))

    notify(SIDE_FRAME)
