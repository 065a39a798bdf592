from __future__ import annotations

FILE_HEADER_FORMAT = "!qIIH"  # transfer_id, total_chunks, chunk_index, name_len
FRAME_HEADER_FORMAT = "!IHH"  # frame_id, total_parts, part_index
ACK_FORMAT = "!qIB"  # transfer_id, chunk_index, status

ACK_OK = 0

MAX_UDP_PAYLOAD = 65507
RECV_BUFSIZE = 65535

DEFAULT_CHUNK_SIZE = 8192
DEFAULT_MAX_DATAGRAM = 60000
FRAME_PACKET_SIZE = 1400

DEFAULT_ACK_TIMEOUT_MS = 250
DEFAULT_MAX_RETRIES = 20
DEFAULT_WORKERS = 4

DEFAULT_STALE_AFTER_S = 30.0
DEFAULT_MAX_TRANSFERS = 1024
DEFAULT_COMPLETED_MEMORY = 4096

DEFAULT_SINK_WORKERS = 2
DEFAULT_SINK_QUEUE = 64

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".bmp")
