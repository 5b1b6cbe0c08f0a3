"""Local development server for the CRM API.

Usage:
    python run.py

Reads .env first, so GOOGLE_*, OPENAI_API_KEY, MASTER_PIN etc. can live
there. The Gmail OAuth redirect defaults to port 5001, which is why the
server listens there.
"""

from dotenv import load_dotenv

load_dotenv()

from crm import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
