# tsvshuttle/storage.py
"""
Azure Blob Storage transport for staged files.

Uploads honour an overwrite policy: with ``overwrite=False`` the write is
conditional and fails with ErrorKind.CONFLICT when the blob already exists.
"""

import logging
from pathlib import Path
from typing import Optional

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import BlobServiceClient

from .results import ErrorKind, StepResult
from .utils import remove_files

logger = logging.getLogger(__name__)

CONFLICT_HINT = "The blob may already exist. Use --overwrite to force upload."


def classify_azure_error(error: Exception) -> str:
    """Map an azure-core exception to an ErrorKind."""
    if isinstance(error, ResourceExistsError):
        return ErrorKind.CONFLICT
    if isinstance(error, ResourceNotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(error, ClientAuthenticationError):
        return ErrorKind.AUTH
    if isinstance(error, (ServiceRequestError, ServiceResponseError)):
        return ErrorKind.CONNECTION
    if isinstance(error, HttpResponseError):
        status = getattr(error, 'status_code', None)
        if status in (401, 403):
            return ErrorKind.AUTH
        if status == 404:
            return ErrorKind.NOT_FOUND
        if status in (409, 412):
            return ErrorKind.CONFLICT
    return ErrorKind.TOOL


class BlobStore:
    """
    Upload, download and account checks against one storage account.

    Example
    -------
    ::

        from azure.identity import AzureCliCredential

        store = BlobStore('salesdumps', credential=AzureCliCredential())
        result = store.upload(Path('fire_nation_army.tsv.gz'), 'exports', 'dbo/fire_nation_army.tsv.gz')
        if result.kind == ErrorKind.CONFLICT:
            ...
    """

    def __init__(self, account_name: str, credential=None, account_url: Optional[str] = None,
                 service_client: Optional[BlobServiceClient] = None):
        self.account_name = account_name
        self.account_url = account_url or f"https://{account_name}.blob.core.windows.net"
        self._credential = credential
        self._service_client = service_client

    @property
    def service_client(self) -> BlobServiceClient:
        if self._service_client is None:
            self._service_client = BlobServiceClient(account_url=self.account_url, credential=self._credential)
        return self._service_client

    def _blob_client(self, container: str, blob_name: str):
        return self.service_client.get_container_client(container).get_blob_client(blob_name)

    def check_account(self) -> StepResult:
        """Confirm the storage account exists and answers with our credential."""
        try:
            info = self.service_client.get_account_information()
        except AzureError as e:
            return StepResult.failure(classify_azure_error(e),
                                      f"Failed to access Azure Storage Account: {self.account_name}",
                                      detail=str(e))
        return StepResult.success(info, message=f"Azure Storage Account {self.account_name} is accessible")

    def upload(self, local_file: Path, container: str, blob_name: str, overwrite: bool = False) -> StepResult:
        """Upload ``local_file`` to ``container/blob_name``."""
        local_file = Path(local_file)
        try:
            with open(local_file, 'rb') as fp:
                self._blob_client(container, blob_name).upload_blob(fp, overwrite=overwrite)
        except OSError as e:
            return StepResult.failure(ErrorKind.NOT_FOUND, f"Cannot read {local_file}", detail=str(e))
        except AzureError as e:
            kind = classify_azure_error(e)
            message = f"Failed to upload {local_file.name} to Blob Storage"
            if kind == ErrorKind.CONFLICT and not overwrite:
                message = f"{message}. {CONFLICT_HINT}"
            return StepResult.failure(kind, message, detail=str(e))
        return StepResult.success(message=f"Uploaded {local_file.name} to {container}/{blob_name}")

    def download(self, container: str, blob_name: str, local_file: Path) -> StepResult:
        """Download ``container/blob_name`` to ``local_file``, removing any partial file on failure."""
        local_file = Path(local_file)
        try:
            with open(local_file, 'wb') as fp:
                self._blob_client(container, blob_name).download_blob().readinto(fp)
        except AzureError as e:
            remove_files(local_file)
            return StepResult.failure(classify_azure_error(e),
                                      f"Failed to download {local_file.name} from Blob Storage",
                                      detail=str(e))
        except OSError as e:
            remove_files(local_file)
            return StepResult.failure(ErrorKind.TOOL, f"Cannot write {local_file}", detail=str(e))
        return StepResult.success(local_file, message=f"Downloaded {container}/{blob_name}")
