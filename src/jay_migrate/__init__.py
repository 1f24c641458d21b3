"""jay-migrate: versioned schema migrations from up/down file pairs."""

import logging

__version__ = "0.5.0"

# The CLI installs a handler with --verbose; library users configure their own.
logging.getLogger(__name__).addHandler(logging.NullHandler())
