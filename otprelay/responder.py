# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTTP responder serving the latest code.

Every request, whatever its path or method, gets status 200 and a
plain-text body: ``"{code} {phrase}"`` when a code is stored, the sentinel
``"000000 sleeping frogs"`` before the first code, or a fixed error string
when the store cannot be read.
"""

import logging
import threading
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from werkzeug.wrappers.response import StartResponse

from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from otprelay.store import CodeStore, CodeStoreUnavailableError


logger = logging.getLogger(__name__)

SENTINEL_BODY = "000000 sleeping frogs"
ERROR_BODY = "Error accessing 2FA code"


class ResponderService:
    """WSGI server exposing the contents of a CodeStore.

    Runs in a background thread for the lifetime of the process.
    """

    def __init__(
        self,
        store: CodeStore,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        """Initialize the responder.

        Args:
            store: Shared store to read from.
            host: Host to bind to.
            port: Port to bind to.
        """
        self.store = store
        self.host = host
        self.port = port
        self._server: Any = None
        self._thread: threading.Thread | None = None

    def render_body(self) -> str:
        """Compute the response body for the current store contents."""
        try:
            code = self.store.get()
        except CodeStoreUnavailableError as e:
            logger.warning("Serving error response: %s", e)
            return ERROR_BODY
        if code is None:
            return SENTINEL_BODY
        return f"{code.code} {code.phrase}"

    def start(self) -> None:
        """Bind the server and serve from a daemon thread.

        Raises:
            OSError: If the address cannot be bound.
        """
        self._server = make_server(self.host, self.port, self._wsgi_app)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="ResponderService",
        )
        self._thread.start()
        logger.info(
            "HTTP server listening on http://%s:%d", self.host, self.port
        )

    def stop(self) -> None:
        """Stop serving and release the listening socket."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
            logger.info("HTTP server stopped")

    def _wsgi_app(
        self,
        environ: dict[str, Any],
        start_response: "StartResponse",
    ) -> Iterable[bytes]:
        """WSGI application entry point."""
        request = Request(environ)
        logger.debug("%s %s", request.method, request.path)
        response = Response(self.render_body(), mimetype="text/plain")
        return response(environ, start_response)
