from shared.helper.HelperConfig import HelperConfig
from shared.clients.auth.CredentialProvider import CredentialProvider
from shared.clients.search.SearchClientInterface import SearchClientInterface


class SearchClientManager:
    """Manager class to instantiate the configured search backend client."""

    def __init__(self, helper_config: HelperConfig, credentials: CredentialProvider | None = None):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self._credentials = credentials
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """Read the search engine name from env configuration.

        Returns:
            str: Capitalised engine name (e.g. "Graphql").
        """
        engine = self.helper_config.get_string_val("SEARCH_ENGINE", default="graphql")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> SearchClientInterface:
        """Instantiate the search client for the configured engine.

        Returns:
            SearchClientInterface: The instantiated client.

        Raises:
            ValueError: If the engine is unsupported or cannot be imported.
        """
        engine = self._get_engine_from_env()
        class_name = f"SearchClient{engine}"
        try:
            module = __import__(
                f"shared.clients.search.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
            client = client_class(helper_config=self.helper_config, credentials=self._credentials)
            self.logging.debug("Instantiated search client for engine: %s", engine)
            return client
        except (ImportError, AttributeError) as e:
            raise ValueError("Unsupported search engine '%s'. Error: %s" % (engine, e))

    def get_client(self) -> SearchClientInterface:
        """Return the instantiated search client."""
        return self.client
