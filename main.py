# local development entry point: uvicorn main:app --reload

from fishstore.logging import configure_logging
from fishstore.service import create_app

configure_logging()

app = create_app()
