from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx
from httpx._types import QueryParamTypes, RequestContent, RequestData, RequestFiles

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class ClientInterface(ABC):
    """Base for every HTTP backend: embedding providers, vector indexes and file sources.

    Subclasses name their type ("embed", "rag", "source") and engine ("openai",
    "qdrant", "gdrive"); configuration is read from ``<TYPE>_<ENGINE>_<KEY>``.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0, minimum=1)

        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """Read every declared EnvConfig once so a missing key fails at construction.

        Raises:
            ValueError: If a required key is unset or has an unknown val_type.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    def is_booted(self) -> bool:
        return self._client is not None

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        pass

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """Read ``<TYPE>_<ENGINE>_<raw_key>`` with the HelperConfig getter for ``val_type``.

        A default of None makes the key required.
        """
        getters: dict[str, Callable[..., Any]] = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
        }
        getter = getters.get(val_type)
        if getter is None:
            raise ValueError(f"Unsupported config value type '{val_type}' for {self._get_config_key_name(raw_key)}.")
        return getter(self._get_config_key_name(raw_key), default=default)

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """Headers proving identity to the backend; empty when it needs none."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        self._client = httpx.AsyncClient(timeout=self.timeout)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        data: RequestData | None = None,
        files: RequestFiles | None = None,
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
        base_url: str | None = None,
        with_auth: bool = True,
    ) -> httpx.Response:
        """Send one request to the backend.

        Only one of content, data, files or json is sent, in that order of
        precedence. ``base_url`` redirects a single call (the Drive OAuth token
        endpoint), and ``with_auth=False`` leaves out the auth header for it.

        Raises:
            RuntimeError: If boot() has not been called.
            httpx.HTTPStatusError: On a non-2xx status when raise_on_error is set.
                Pipeline stages classify failures by its status code.
        """
        if self._client is None:
            raise RuntimeError("HTTP client not initialised. Call boot() before making requests.")

        endpoint = "/" + endpoint.strip().lstrip("/") if endpoint.strip() else ""

        # httpx sets Content-Type for json/data/files; raw content callers pass their own
        headers: dict = self._get_auth_header() if with_auth else {}
        headers = {**headers, **(additional_headers or {})}

        url = f"{(base_url or self._get_base_url()).rstrip('/')}{endpoint}"
        body: dict = {}
        for name, value in (("content", content), ("data", data), ("files", files), ("json", json)):
            if value is not None:
                body[name] = value
                break

        response = await self._client.request(method, url, headers=headers, params=params, timeout=self.timeout, **body)

        if raise_on_error and not response.is_success:
            self.logging.error("Request to %s failed with status %d: %s", url, response.status_code, response.text[:500])
            response.raise_for_status()

        return response
