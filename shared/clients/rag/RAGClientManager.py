from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface

class RAGClientManager:
    """
    Manager class to build the vector index clients listed in RAG_ENGINES.

    The first configured engine is the primary index: it serves searches and
    receives every write. Further engines are mirrors and only receive writes.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.clients = self._initialize_clients()

    def _get_engines_from_env(self) -> list[str]:
        """
        Reads the list of RAG engines from ENV configuration.

        Returns:
            list[str]: A list of RAG engine names, capitalized (e.g. ["Qdrant"]).

        Raises:
            ValueError: If no RAG engines are specified in the configuration.
        """
        engines = self.helper_config.get_list_val("RAG_ENGINES")
        if not engines:
            raise ValueError("No RAG engines specified in configuration.")

        # lowercase all and uppercase first letter to match the class names
        return [engine.strip().lower().capitalize() for engine in engines]

    def _initialize_clients(self) -> list[RAGClientInterface]:
        """
        Initializes RAG clients based on the engines specified in the configuration.

        Returns:
            list[RAGClientInterface]: A list of instances of RAG clients that implement the RAGClientInterface.

        Raises:
            ValueError: If an engine is unknown or no client could be instantiated.
        """
        clients = []
        for engine in self._get_engines_from_env():
            className = f"RAGClient{engine}"
            # try to import the class from shared.clients.rag.{engine}
            try:
                module = __import__(
                    f"shared.clients.rag.{engine.lower()}.{className}",
                    fromlist=[className],
                )
                client_class = getattr(module, className)
            except (ImportError, AttributeError) as e:
                raise ValueError(f"Unsupported RAG engine specified: '{engine}'. Error: {e}")
            clients.append(client_class(helper_config=self.helper_config))
            self.logging.debug("Instantiated RAG client for engine: %s", engine)
        if not clients:
            raise ValueError("No valid RAG clients could be instantiated from the specified engines.")
        return clients

    def get_clients(self) -> list[RAGClientInterface]:
        """
        Returns the list of instantiated RAG clients.

        Returns:
            list[RAGClientInterface]: The list of RAG client instances.
        """
        return self.clients

    def get_primary_client(self) -> RAGClientInterface:
        return self.clients[0]

    async def boot(self) -> None:
        for client in self.clients:
            await client.boot()

    async def close(self) -> None:
        for client in self.clients:
            await client.close()
