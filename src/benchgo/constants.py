"""
benchgo - Global Constants and Configuration Values

This module defines all constants used throughout benchgo.
Protocol constants, sizes and configuration defaults are centralized here.
"""

# Version Information
VERSION = "0.3.0"
APP_NAME = "benchgo"

# Protocol Version (sent in every handshake record)
PROTOCOL_VERSION = "0.2"

# Handshake record types
NEW_SESSION_MSG = "NEW SESSION"
OKAY_SESSION_MSG = "OKAY"

# Network Constants
DEFAULT_PORT = 8081
DEFAULT_HOST = "0.0.0.0"

# Timeouts (seconds)
CONNECT_TIMEOUT = 10
HANDSHAKE_TIMEOUT = 15
RECEIVE_TIMEOUT = 30

# Wire limits
MAX_RECORD_SIZE = 1024 * 1024  # 1 MB per tagged record
READ_CHUNK_SIZE = 4096
MAX_TEXT_MESSAGE_SIZE = 100 * 1024  # 100 KB

# Cryptography Constants
HALF_KEY_SIZE = 8  # bytes contributed by each peer
SESSION_KEY_SIZE = 16  # two halves
SESSION_ID_SIZE = 8
CIPHER_BLOCK_SIZE = 8  # CAST5
DEFAULT_RSA_KEY_SIZE = 2048
RECOMMENDED_RSA_KEY_SIZE = 2048
MIN_RSA_KEY_SIZE = 1024
MAX_RSA_KEY_SIZE = 8192
MAX_MODULUS_DIGITS = len(str(2 ** MAX_RSA_KEY_SIZE))
RSA_PUBLIC_EXPONENT = 65537
NONCE_SIZE = 12  # AES-256-GCM identity files
SALT_SIZE = 16
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 1
ARGON2_HASH_LEN = 32
IDENTITY_FILE_VERSION = "1.0"

# File Paths
DEFAULT_DATA_DIR = "~/.benchgo"
IDENTITY_FILENAME = "identity.enc"
CONFIG_FILENAME = "config.toml"
LOGS_DIR = "logs"
LOG_FILENAME = "benchgo.log"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5

# UI Configuration
UI_MAX_HISTORY_DISPLAY = 50
