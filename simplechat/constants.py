# simplechat protocol and console constants

DEFAULT_PORT = 5555
DEFAULT_HOST = "localhost"

# Console lines starting with this character are control commands.
COMMAND_PREFIX = "#"

# Client-originated login handshake, e.g. "#login alice".
LOGIN_COMMAND = "#login"

# Prefix used for unbound connections when fanning out chat lines.
ANON = "ANON"

SERVER_MSG_PREFIX = "SERVER MSG> "

LOGIN_ID_MAX_CHARS = 32

# Wire envelope keys
CHAT_VERSION = 1

K_V = 0
K_T = 1
K_TS = 2
K_BODY = 3

# Message types
T_MSG = 20

# Frame header: unsigned 32-bit big-endian payload length.
FRAME_HEADER = "!I"
MAX_FRAME_BYTES = 64 * 1024
