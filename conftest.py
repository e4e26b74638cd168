"""Root conftest: runs before any test module imports."""

import os

# CI runners often export FORCE_COLOR, which makes Rich emit ANSI codes
# and breaks CLI tests that parse stdout as JSON or URLs. Rich reads
# these at Console() creation, so clear them before margin.cli imports.
os.environ.pop("FORCE_COLOR", None)
os.environ["NO_COLOR"] = "1"
