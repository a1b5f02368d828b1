import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "edge-proxy")
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "0.1.0")

HOST = os.environ.get("HOSTNAME", "") or "0.0.0.0"
PORT = int(os.environ.get("PORT", "") or "3000")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
