import sys
from pathlib import Path

# Add project root to sys.path to allow importing root modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Import all fixtures and hooks from the main CRM conftest
# This enables the run log, failure artifacts and browser fixtures for every suite
from CRM_Conftest import *  # noqa: F401,F403
