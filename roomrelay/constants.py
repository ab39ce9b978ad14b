# Wire protocol constants (numeric envelope keys) and relay event names

ENVELOPE_VERSION = 1

# Envelope keys
K_V = 0
K_EVENT = 1
K_ID = 2
K_TS = 3
K_BODY = 6

# First envelope on every link; its body carries the connect hints.
EV_HELLO = "hello"

# Hint keys inside the HELLO body
H_MODE = "mode"
H_CURRENT_NAME = "currentName"
H_NICK_NAME = "nickName"
H_TEAM_NAME = "teamName"

MODE_NORMAL = "normal"
MODE_RECONNECT = "re-connect"

# Inbound event names (several are also relayed under the same name)
EV_ECHO_CLIENT_TO_SERVER = "echo-from-Client-to-Server"
EV_ECHO_HOST_TO_SERVER = "echo-from-Host-to-Server"
EV_CHAT_MESSAGE = "chat message"
EV_CHAT_MESSAGE_NOT_ME = "chat message but not me"
EV_SIGNALING_MESSAGE = "signaling message"
EV_CONTROL_MESSAGE = "control message"
EV_CLIENT_MK = "client-mK-event"
EV_ROOM_JOIN = "roomJoin"
EV_CLIENT_DISCONNECT_BY_HOST = "clientDisconnectByHost"
EV_OK_DISCONNECT_ME = "okDisconnectMe"
EV_SHUTDOWN_P2P_DELETE_CLIENT = "shutDown-p2p-deleteClient"
EV_COMMAND_HOST_TO_ALL = "command-from-host-to-all-clients"

# Outbound-only event names
EV_YOUR_NAME_IS = "your name is"
EV_ROOM_JOINING_MESSAGE = "room-joining-message"
EV_NEW_GAME_CLIENT = "new-game-client"
EV_CLIENT_DISCONNECTED = "client-disconnected"
EV_DISCONNECT_BY_SERVER = "disconnectByServer"
EV_ECHO_SERVER_TO_CLIENT = "echo-from-Server-to-Client"
EV_ECHO_SERVER_TO_HOST = "echo-from-Server-to-Host"
EV_CLIENT_MK_TO_HOST = "client-mK-StH-event"

# Addressing keywords
TO_HOST = "host"
TO_ROOM = "room"
TO_ROOM_NO_SENDER = "roomNoSender"

# Display label layouts
LABEL_COMMA = "comma"
LABEL_PRENS = "prens"

# Literal substituted for the base identity of a room's host
HOST_ROLE_NAME = "host"

# Host-only chat commands
CMD_DISCONNECT_CLIENTS = "dcir"
CMD_ROOM_REPORT = "rr"

# Idle lifecycle defaults (seconds)
IDLE_BUDGET_S = 40 * 60
IDLE_EXTENSION_S = 5 * 60
IDLE_CAP_S = 180 * 60

STARTUP_NOTICE_DELAY_S = 5.0

NICK_MAX_CHARS = 32
ROOM_NAME_MAX_CHARS = 64
