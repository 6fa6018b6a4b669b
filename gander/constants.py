"""Gander constants."""

from __future__ import annotations

# Inventory
DEFAULTS_STEM = "defaults"
DEFAULT_SSH_PORT = 22

# Connections
DEFAULT_CONNECT_TIMEOUT_S = 5.0

# Local state
STATE_DIR_NAME = ".gander"
KNOWN_HOSTS_FILE_NAME = "known_hosts"
PASSPHRASE_ENV_VAR = "GANDER_KEY_PASSPHRASE"
RELAY_SOCKET_NAME = "agent.sock"

# ssh-agent protocol (draft-miller-ssh-agent)
SSH_AGENT_FAILURE = 5
SSH_AGENTC_REQUEST_IDENTITIES = 11
SSH_AGENT_IDENTITIES_ANSWER = 12
SSH_AGENTC_SIGN_REQUEST = 13
SSH_AGENT_SIGN_RESPONSE = 14
SSH_AGENT_RSA_SHA2_256 = 0x02
SSH_AGENT_RSA_SHA2_512 = 0x04
# Larger requests are rejected rather than buffered.
AGENT_MAX_MESSAGE_LEN = 256 * 1024
