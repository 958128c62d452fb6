# common/protocol.py
from collections import namedtuple

HOST = '127.0.0.1'  # Standard loopback interface address (localhost)
PORT = 8080
BUFFER_SIZE = 4096  # Transfer unit, also the single-read response window
FILES_DIR = './archivos'
SOCKET_TIMEOUT = 300.0
MAX_COMMAND_LENGTH = BUFFER_SIZE
ENCODING = 'utf-8'

# Commands
CMD_LIST = "LIST"
CMD_GET = "GET"
CMD_GET_PREFIX = "GET "
CMD_EXIT = "EXIT"
CMD_UNKNOWN = "UNKNOWN"

# Server Responses
WELCOME = (
    "=== SERVIDOR DE ARCHIVOS ===\n"
    "Comandos disponibles:\n"
    "  LIST - Listar archivos\n"
    "  GET <nombre> - Obtener archivo\n"
    "  EXIT - Salir\n"
    "============================\n"
)
LIST_HEADER = "=== LISTA DE ARCHIVOS ===\n"
LIST_FOOTER = "========================\n"
LIST_ENTRY = "- {name} ({size} bytes)\n"
FILE_HEADER = "=== CONTENIDO DE {name} ===\n"
FILE_FOOTER = "\n=== FIN DEL ARCHIVO ===\n"
ERR_OPEN_DIR = "Error: No se puede abrir el directorio\n"
ERR_OPEN_FILE = "Error: No se puede abrir el archivo '{name}'\n"
ERR_READ_FILE = "\nError: Lectura interrumpida del archivo '{name}'\n"
ERR_BAD_NAME = "Error: Nombre de archivo inválido\n"
RESP_UNKNOWN = "Comando no reconocido. Use LIST, GET <archivo> o EXIT\n"
RESP_BYE = "Cerrando conexión...\n"

# Markers the client looks for to find the end of a GET frame
END_MARKER = b"=== FIN DEL ARCHIVO ==="
ERROR_MARKER = b"Error:"
FILE_HEADER_PREFIX = b"=== CONTENIDO DE "

# Persistence policies for GET output saved by the client
SAVE_RAW = "raw"
SAVE_STRIPPED = "stripped"

Command = namedtuple('Command', ['verb', 'argument', 'raw'])


def strip_line(line):
    """Drop the line delimiter: the trailing newline and a CR before it."""
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


def parse_command(line):
    line = strip_line(line)
    if line == CMD_LIST:
        return Command(CMD_LIST, None, line)
    if line.startswith(CMD_GET_PREFIX):
        return Command(CMD_GET, line[len(CMD_GET_PREFIX):], line)
    if line == CMD_EXIT:
        return Command(CMD_EXIT, None, line)
    return Command(CMD_UNKNOWN, None, line)


def encode(text):
    return text.encode(ENCODING)
