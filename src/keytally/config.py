import os
from dataclasses import dataclass

from keytally.provider.factory import FACTORY_USAGE_URL
from keytally.runner import DEFAULT_CONCURRENCY


@dataclass
class Config:
    # one of "serve", "snapshot", "import"
    command: "str" = "serve"
    # listen_address: format ":8000" or
    # "0.0.0.0:8000"
    listen_address: "str" = ":8000"
    log_level: "str" = "info"
    # "console" or "json"
    log_format: "str" = "console"

    store_path: "str" = "keytally-store.json"
    upstream_url: "str" = FACTORY_USAGE_URL
    # maximum number of usage fetches in flight
    concurrency: "int" = DEFAULT_CONCURRENCY
    # per request timeout in seconds
    fetch_timeout: "float" = 10.0
    # empty disables the login
    admin_password: "str" = ""

    # file with one secret per line, for the import command
    import_file: "str" = ""

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            store_path=os.environ.get("KEYTALLY_STORE_PATH", cls.store_path),
            upstream_url=os.environ.get("KEYTALLY_UPSTREAM_URL", FACTORY_USAGE_URL),
            admin_password=os.environ.get("ADMIN_PASSWORD", ""),
        )

    @property
    def auth_enabled(self) -> "bool":
        return bool(self.admin_password)
