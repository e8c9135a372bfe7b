from typing import Any

from shared.helper.HelperConfig import HelperConfig


class ClientManager:
    """
    Picks the engine for one client type from "{TYPE}_ENGINE" and instantiates
    shared.clients.{package}.{engine}.{ClassPrefix}{Engine}.

    Subclasses only set the class attributes below.
    """

    client_type: str = ""
    package: str = ""
    class_prefix: str = ""
    default_engine: str | None = None
    expected_type: type | None = None

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Returns:
            str: Capitalised engine name, e.g. "Ollama".

        Raises:
            ValueError: If no engine is configured and the type has no default.
        """
        env_key = f"{self.client_type.upper()}_ENGINE"
        engine = self.helper_config.get_string_val(env_key, default=self.default_engine)
        if not engine or not engine.strip():
            raise ValueError(f"No {self.client_type} engine configured ({env_key}).")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> Any:
        """
        Raises:
            ValueError: If the engine module or class does not exist, or the class
                does not provide the expected capability.
        """
        engine = self._get_engine_from_env()
        class_name = f"{self.class_prefix}{engine}"
        try:
            module = __import__(f"shared.clients.{self.package}.{engine.lower()}.{class_name}", fromlist=[class_name])
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported {self.client_type} engine '{engine}'. Error: {e}")

        client = client_class(helper_config=self.helper_config)
        if self.expected_type is not None and not isinstance(client, self.expected_type):
            raise ValueError(f"{self.client_type} engine '{engine}' does not implement {self.expected_type.__name__}.")
        self.logging.debug("Instantiated %s client for engine: %s", self.client_type, engine)
        return client

    def get_client(self) -> Any:
        return self.client
