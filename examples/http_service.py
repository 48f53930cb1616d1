"""Register a small HTTP service with Nacos while it is running.

Settings come from the environment:
- NACOS_ADDR       Nacos server address
- NACOS_NAMESPACE  service namespace
- SERVICE_ADDR     address this service listens on
- SERVICE_NAME     name to register under
"""

import logging
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from ez_discovery import EzError, ServiceLifecycleManager
from ez_discovery.config import parse_socket_addr


class HealthHandler(BaseHTTPRequestHandler):

    def do_GET(self):
        body = b"ok\n"
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


def main() -> None:
    logging.basicConfig(level=logging.INFO)

    try:
        manager = ServiceLifecycleManager()
    except EzError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    # Start the service first, register it once it can take traffic
    host, port = parse_socket_addr(manager.options.service_addr)
    server = ThreadingHTTPServer((host, port), HealthHandler)
    threading.Thread(target=server.serve_forever, daemon=True).start()

    try:
        manager.online()
    except EzError as exc:
        print(f"online fail, caused by: {exc}", file=sys.stderr)
        server.shutdown()
        sys.exit(1)

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        try:
            manager.offline()
        finally:
            server.shutdown()
            manager.close()


if __name__ == "__main__":
    main()
