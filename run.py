"""Local development entry point.

Usage:
    python run.py

Reads configuration from .env (see pixcheckout/config.py for the
variables) and serves the checkout API on port 5001.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from pixcheckout import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
