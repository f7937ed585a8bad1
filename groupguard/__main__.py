from dotenv import load_dotenv

from groupguard.cli.commands import app
from groupguard.utils.helpers import get_env_file_path

# Load .env file from the data root (GROUPGUARD_HOME or ~/.groupguard/) if it exists
# Precedence: existing env vars > .env file (override=False)
load_dotenv(get_env_file_path(), override=False)

if __name__ == "__main__":
    app()
