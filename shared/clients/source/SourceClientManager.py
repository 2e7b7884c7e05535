from shared.helper.HelperConfig import HelperConfig
from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.clients.source.models.SourceFile import SourceCredential

class SourceClientManager:
    """
    Builds file source clients for the engine selected by SOURCE_ENGINE.

    Unlike the other managers it does not hold a client: every client is
    scoped to one user's credential and created on demand.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.engine = self._get_engine_from_env()
        self.client_class = self._resolve_client_class()

    def _get_engine_from_env(self) -> str:
        """
        Reads the source engine from ENV configuration.

        Returns:
            str: The engine name, capitalized (e.g. "Gdrive").
        """
        engine = self.helper_config.get_string_val("SOURCE_ENGINE", default="gdrive")
        return engine.strip().lower().capitalize()

    def _resolve_client_class(self) -> type[SourceClientInterface]:
        """
        Raises:
            ValueError: If the engine is unknown.
        """
        className = f"SourceClient{self.engine}"
        # try to import the class from shared.clients.source.{engine}
        try:
            module = __import__(
                f"shared.clients.source.{self.engine.lower()}.{className}",
                fromlist=[className],
            )
            return getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported source engine specified: '{self.engine}'. Error: {e}")

    def create_client(self, credential: SourceCredential) -> SourceClientInterface:
        """
        Builds an un-booted client for one user's credential.

        Returns:
            SourceClientInterface: Call boot() before use and close() afterwards.
        """
        client = self.client_class(helper_config=self.helper_config, credential=credential)
        self.logging.debug("Instantiated source client %s for user %s", self.engine, credential.user_id)
        return client
