import os
import warnings

warnings.filterwarnings("ignore", category=DeprecationWarning)

# Set test environment variables before any `livecast` module reads the config
os.environ.update(
    {
        "DEMO_MODE": "true",
        "ARCHIVE_BACKEND": "memory",
        "REDIS_RELAY_ENABLED": "false",
        "LOGFIRE_ENABLE": "false",
    }
)

from tests.fixtures.pipeline_fixtures import *  # noqa: E402, F403
