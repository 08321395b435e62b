import os
from dotenv import load_dotenv

# --- Locate project root ---
# This assumes the 'config' folder is in the project's root directory.
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
dotenv_path = os.path.join(PROJECT_ROOT, ".env")

load_dotenv(dotenv_path)

# --- Ledger and confidential-computation endpoints ---
ETHEREUM_NODE_URL = os.getenv("ETHEREUM_NODE_URL")
NOISE_LEDGER_CONTRACT_ADDRESS = os.getenv("NOISE_LEDGER_CONTRACT_ADDRESS")
NOISE_LEDGER_ABI_PATH = os.getenv(
    "NOISE_LEDGER_ABI_PATH", os.path.join(PROJECT_ROOT, "abis", "confidential_noise.json")
)
RELAYER_URL = os.getenv("RELAYER_URL", "https://relayer.testnet.zama.cloud")

# --- Reporter identity (either one is enough) ---
REPORTER_PRIVATE_KEY = os.getenv("REPORTER_PRIVATE_KEY")
REPORTER_MNEMONIC = os.getenv("REPORTER_MNEMONIC")

# --- Agent / backend ---
AGENTVERSE_API_KEY = os.getenv("AGENTVERSE_API_KEY")
REPORTER_AGENT_SEED = os.getenv("REPORTER_AGENT_SEED", "echonet_confidential_reporter_seed_phrase")
BACKEND_PORT = int(os.getenv("PORT", "5000"))


def positive_int_setting(name, default):
    value = int(os.getenv(name, default))
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value


# --- Tunables ---
MAX_DECIBEL = positive_int_setting("MAX_DECIBEL", "150")
STATUS_SUCCESS_SECONDS = float(os.getenv("STATUS_SUCCESS_SECONDS", "2"))
STATUS_ERROR_SECONDS = float(os.getenv("STATUS_ERROR_SECONDS", "3"))
TX_CONFIRMATION_TIMEOUT = float(os.getenv("TX_CONFIRMATION_TIMEOUT", "120"))
TX_GAS_LIMIT = positive_int_setting("TX_GAS_LIMIT", "3000000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


if not REPORTER_PRIVATE_KEY and not REPORTER_MNEMONIC:
    print("⚠️ WARNING: neither REPORTER_PRIVATE_KEY nor REPORTER_MNEMONIC is set in your .env file! "
          "Reports and decryptions will be refused.")
