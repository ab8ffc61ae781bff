"""Per-user directory paths for crosspls.

Directories follow the platform conventions resolved by ``platformdirs``.
The install root is where the server binary is expected to live unless an
explicit path is configured.
"""

import os
from platformdirs import user_config_dir, user_data_dir, user_log_dir

APP_NAME = "crosspls"


class GlobalPath:
    """Global path lookup for crosspls directories."""

    @classmethod
    def data(cls) -> str:
        """Application data directory."""
        return user_data_dir(APP_NAME)

    @classmethod
    def install(cls) -> str:
        """Default install root the server path is resolved against."""
        return os.environ.get("CROSSPLS_INSTALL_ROOT") or cls.data()

    @classmethod
    def log(cls) -> str:
        """Log file directory."""
        return user_log_dir(APP_NAME)

    @classmethod
    def config(cls) -> str:
        """Configuration directory."""
        return user_config_dir(APP_NAME)
