"""Backend entrypoint: starts uvicorn with host/port from the environment."""
import os
import uvicorn

from coinfolio.main import app


def main() -> None:
    host = os.environ.get("COINFOLIO_HOST", "127.0.0.1")
    port = int(os.environ.get("COINFOLIO_PORT", "8001"))
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
