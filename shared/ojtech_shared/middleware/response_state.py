from starlette.types import ASGIApp, Message, Receive, Scope, Send

RESPONSE_COMMITTED = "response_committed"


class ResponseCommitMiddleware:
    """
    Flag ``request.state.response_committed`` once the response start is sent.

    Handlers that run after the status line has gone out (streaming bodies,
    background work sharing the request) read the flag and skip writing
    their own response.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})

        async def _send(message: Message) -> None:
            if message["type"] == "http.response.start":
                state[RESPONSE_COMMITTED] = True
            await send(message)

        await self.app(scope, receive, _send)
