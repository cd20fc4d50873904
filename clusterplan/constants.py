# The name of the project
PROJECT_NAME = "clusterplan"

# The declaration document version this tool understands
CONFIG_VERSION = "1.0"

# Environment variables with this prefix override declared variables,
# e.g. CLUSTERPLAN_VAR_cluster_name=demo
VAR_ENV_PREFIX = "CLUSTERPLAN_VAR_"

# Files with these suffixes are loaded as declaration documents
DECLARATION_SUFFIXES = (".yaml", ".yml")

# Files with these suffixes hold variable values and are never loaded as declarations
VARS_FILE_SUFFIXES = (".vars.yaml", ".vars.yml")

# The version of the recorded state snapshot format
STATE_VERSION = 1
