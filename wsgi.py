import os

# Production unless told otherwise
os.environ.setdefault("ENV", "production")

from commfund import create_app  # noqa: E402

app = create_app()
