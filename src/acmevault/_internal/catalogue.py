"""Request documents stored as files."""
import asyncio
import logging
import os
from typing import AsyncIterator
from typing import List
from typing import Tuple
from typing import Union

from acmevault import errors
from acmevault import interfaces

logger = logging.getLogger(__name__)


class DirectoryCatalogue(interfaces.RequestCatalogue):
    """Every ``*.json`` file of a directory is one request document."""

    def __init__(self, path: str) -> None:
        self.path = path

    def document_paths(self) -> List[str]:
        """Paths of the request documents, sorted by name.

        :raises .ConfigurationError: if the directory cannot be listed

        """
        try:
            names = os.listdir(self.path)
        except OSError as error:
            raise errors.ConfigurationError(
                f'Cannot read request directory {self.path}: {error}')
        return [os.path.join(self.path, name) for name in sorted(names)
                if name.endswith('.json') and os.path.isfile(os.path.join(self.path, name))]

    async def list_request_documents(
            self) -> AsyncIterator[Tuple[str, Union[bytes, errors.Error]]]:
        for path in self.document_paths():
            raw: Union[bytes, errors.Error]
            try:
                raw = await asyncio.to_thread(_read, path)
            except OSError as error:
                logger.warning('Could not read request document %s: %s', path, error)
                raw = errors.ConfigurationError(f'Cannot read {path}: {error}')
            yield os.path.basename(path), raw


def _read(path: str) -> bytes:
    with open(path, 'rb') as f:
        return f.read()
