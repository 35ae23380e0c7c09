import json
import os
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
CONFIG_FILE_PATH = os.getenv(
    'OSTRICH_CONFIG_PATH',
    os.path.join(PROJECT_ROOT, 'configs', 'game_balance.json'),
)

def load_config(path=CONFIG_FILE_PATH):
    """
    Loads the race and economy balance config file.
    """
    try:
        with open(path, 'r') as f:
            config = json.load(f)
        return config
    except FileNotFoundError:
        print(f"FATAL ERROR: Could not find config file at {path}")
        return None
    except json.JSONDecodeError as e:
        print(f"FATAL ERROR: Could not parse config file {path}: {e}")
        return None

# Load the config ONCE when the module is first imported
BALANCE_CONFIG = load_config()

# A simple helper to get nested keys safely
def get_config(key_path, default=None):
    """
    Safely gets a value from the loaded config using a 'dot.path'.
    Example: get_config('race.race_length_ms', 10000)
    """
    if not BALANCE_CONFIG:
        return default

    try:
        value = BALANCE_CONFIG
        for key in key_path.split('.'):
            value = value[key]
        return value
    except (KeyError, TypeError):
        print(f"Warning: Could not find config key: {key_path}")
        return default

def get_money(key_path, default):
    """
    Reads a stake, bankroll or payout multiplier as a Decimal.
    """
    raw = get_config(key_path, default)
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        print(f"Warning: Config key {key_path} is not a number ({raw!r}); using {default}")
        return Decimal(str(default))
