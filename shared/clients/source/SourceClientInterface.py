from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.source.models.SourceFile import SourceCredential, SourceFile, SourceFileListResponse
from shared.helper.HelperConfig import HelperConfig


class SourceClientInterface(ClientInterface):
    """A file source client scoped to one user's stored credential."""

    def __init__(self, helper_config: HelperConfig, credential: SourceCredential):
        super().__init__(helper_config=helper_config)
        self._credential = credential
        self._access_token: str | None = None

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "source"
        """
        return "source"

    def get_user_id(self) -> str:
        return self._credential.user_id

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._access_token:
            return {"Authorization": f"Bearer {self._access_token}"}
        return {}

    @abstractmethod
    async def do_authenticate(self) -> None:
        """
        Exchanges the stored credential for an access token and keeps it on the client.

        Raises:
            httpx.HTTPStatusError: If the source rejects the credential.
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_files(self) -> str:
        """
        Returns the endpoint path for file listing requests.

        Returns:
            str: The endpoint path (e.g. "/files")
        """
        pass

    @abstractmethod
    def _get_list_params(self, page_token: str | None, page_size: int) -> dict:
        """
        Returns the query parameters for one file listing page.

        Args:
            page_token (str | None): Cursor from the previous page, None for the first page.
            page_size (int): Requested number of files per page.
        """
        pass

    @abstractmethod
    def _get_endpoint_download(self, file_id: str) -> str:
        """Returns the endpoint path for downloading the binary content of a file."""
        pass

    @abstractmethod
    def _get_download_params(self) -> dict:
        pass

    @abstractmethod
    def _get_endpoint_export(self, file_id: str) -> str:
        """Returns the endpoint path for exporting a workspace-native file."""
        pass

    @abstractmethod
    def _get_export_params(self, target_mime: str) -> dict:
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def _parse_endpoint_files(self, response: dict) -> SourceFileListResponse:
        """
        Parses one page of the file listing endpoint.

        Args:
            response (dict): The raw response from the file listing endpoint.

        Returns:
            SourceFileListResponse: The files and the cursor for the next page.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def boot(self) -> None:
        await super().boot()
        await self.do_authenticate()

    async def do_list_files(self, page_size: int = 100, limit: int | None = None) -> list[SourceFile]:
        """
        Lists all (non-trashed) files of the user, following the pagination cursor.

        Args:
            page_size (int): Files requested per page.
            limit (int | None): Stop once this many files were collected.

        Returns:
            list[SourceFile]: The listed files, in source order.
        """
        files: list[SourceFile] = []
        page_token: str | None = None
        page = 1
        while True:
            resp = await self.do_request(
                method="GET",
                endpoint=self._get_endpoint_files(),
                params=self._get_list_params(page_token, page_size),
                raise_on_error=True,
            )
            list_response = self._parse_endpoint_files(resp.json())
            files.extend(list_response.files)
            self.logging.info("Fetched files page %d from %s for user %s, total files so far: %d", page, self.get_engine_name(), self.get_user_id(), len(files))
            page_token = list_response.next_page_token
            if not page_token or (limit is not None and len(files) >= limit):
                break
            page += 1
        return files[:limit] if limit is not None else files

    async def do_download_bytes(self, file_id: str) -> bytes:
        """Downloads the binary content of a file."""
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_download(file_id),
            params=self._get_download_params(),
            raise_on_error=True,
        )
        return resp.content

    async def do_export_bytes(self, file_id: str, target_mime: str) -> bytes:
        """Exports a workspace-native file to ``target_mime``."""
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_export(file_id),
            params=self._get_export_params(target_mime),
            raise_on_error=True,
        )
        return resp.content
