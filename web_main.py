"""
Entry point for the summarycast daemon.

Development (hot-reload):
    python web_main.py              ← daemon on 127.0.0.1:8787

Readers authenticate with the bearer token stored in .summarycast_token.json,
which the daemon creates on first start.
"""

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "summarycast.web.app:app",
        host="127.0.0.1",
        port=8787,
        reload=True,
    )
