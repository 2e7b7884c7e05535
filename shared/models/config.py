from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required by a backend client.

    The full environment variable name is derived by the client from its type
    and engine, e.g. ``SOURCE_GDRIVE_CLIENT_ID`` for env_key "CLIENT_ID".

    Attributes:
        env_key (str): The client-relative key of the environment variable to read.
        val_type (str): The expected type of the value. Supported types are "string", "number", "bool" and "list".
        default (str | int | float | bool | list | None): Default if the variable is not set. None marks the variable as required.
    """

    env_key: str
    val_type: str = "string"
    default: str | int | float | bool | list | None = None
