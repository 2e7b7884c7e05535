from datetime import datetime

from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.clients.source.models.SourceFile import SourceCredential, SourceFile, SourceFileListResponse
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class SourceClientGdrive(SourceClientInterface):
    def __init__(self, helper_config: HelperConfig, credential: SourceCredential):
        super().__init__(helper_config=helper_config, credential=credential)
        self._base_url = self.get_config_val("BASE_URL", default="https://www.googleapis.com/drive/v3", val_type="string")
        self._token_url = self.get_config_val("TOKEN_URL", default="https://oauth2.googleapis.com/token", val_type="string")
        self._client_id = self.get_config_val("CLIENT_ID", default=None, val_type="string")
        self._client_secret = self.get_config_val("CLIENT_SECRET", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Gdrive"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://www.googleapis.com/drive/v3"),
            EnvConfig(env_key="TOKEN_URL", val_type="string", default="https://oauth2.googleapis.com/token"),
            EnvConfig(env_key="CLIENT_ID", val_type="string", default=None),
            EnvConfig(env_key="CLIENT_SECRET", val_type="string", default=None),
        ]

    ################ AUTH ##################
    async def do_authenticate(self) -> None:
        resp = await self.do_request(
            method="POST",
            base_url=self._token_url,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": self._credential.refresh_token,
                "grant_type": "refresh_token",
            },
            with_auth=False,
            raise_on_error=True,
        )
        self._access_token = resp.json().get("access_token")
        if not self._access_token:
            raise ValueError("Google token endpoint returned no access_token.")

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/about?fields=user"

    def _get_endpoint_files(self) -> str:
        return "/files"

    def _get_list_params(self, page_token: str | None, page_size: int) -> dict:
        params = {
            "q": "trashed = false",
            "fields": "nextPageToken, files(id, name, mimeType, modifiedTime, size)",
            "spaces": "drive",
            "pageSize": page_size,
        }
        if page_token:
            params["pageToken"] = page_token
        return params

    def _get_endpoint_download(self, file_id: str) -> str:
        return f"/files/{file_id}"

    def _get_download_params(self) -> dict:
        return {"alt": "media"}

    def _get_endpoint_export(self, file_id: str) -> str:
        return f"/files/{file_id}/export"

    def _get_export_params(self, target_mime: str) -> dict:
        return {"mimeType": target_mime}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _parse_endpoint_files(self, response: dict) -> SourceFileListResponse:
        files = []
        for item in response.get("files", []) or []:
            modified = item.get("modifiedTime")
            size = item.get("size")
            files.append(SourceFile(
                id=item["id"],
                name=item.get("name") or item["id"],
                mime_type=item.get("mimeType") or "application/octet-stream",
                modified_time=datetime.fromisoformat(modified.replace("Z", "+00:00")) if modified else None,
                size=int(size) if size is not None else None,
            ))
        return SourceFileListResponse(files=files, next_page_token=response.get("nextPageToken"))
