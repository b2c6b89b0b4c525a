"""
API entrypoint.

    uvicorn connector_api.main:app
"""

from connector_api.app import create_app
from connector_core.logging import setup_logging

setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
