"""Job polling and its HTTP control surface.

The poller (jobs.py) runs on any asyncio event loop; the FastAPI app
(app.py) is one host for it, the CLI is another.
"""
