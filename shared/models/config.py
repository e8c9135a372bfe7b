from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    A single configuration parameter a client reads from the environment.

    The full variable name is built by the client as "{TYPE}_{ENGINE}_{env_key}",
    e.g. env_key "BASE_URL" of the Qdrant RAG client resolves to RAG_QDRANT_BASE_URL.

    Attributes:
        env_key (str): The engine-relative key of the environment variable.
        val_type (str): Expected value type: "string", "number", "bool" or "list".
        default (str | int | float | bool | list | None): Fallback when unset. None marks the key as required.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None
